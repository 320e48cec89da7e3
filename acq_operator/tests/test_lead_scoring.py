"""Lead scorer: additive contributions, clamping, reasons and recent message summaries."""
from datetime import datetime, timedelta, timezone

from app.schemas.inbox import RecentMessage
from app.services.lead_scoring_service import (
    MAX_REASONS,
    extract_intent_signals,
    score_lead,
    summarize_recent_messages,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _thread(**overrides):
    base = {
        "lead_status": "open",
        "priority": False,
        "last_message_at": None,
        "last_message_direction": None,
        "last_message_text": None,
        "last_inbound_at": None,
        "last_outbound_at": None,
    }
    base.update(overrides)
    return base


def test_baseline_open_thread_scores_five() -> None:
    result = score_lead(NOW, _thread(), "none", None, [])
    assert result.score == 5
    assert result.reasons == []
    assert result.waiting_for_reply is False


def test_hot_qualified_waiting_lead_outranks_cold_one() -> None:
    inbound = NOW - timedelta(hours=30)
    hot = score_lead(
        NOW,
        _thread(lead_status="Qualified", priority=True, last_inbound_at=inbound, last_message_at=inbound,
                last_message_direction="inbound"),
        "hot",
        {"alert_type": "hot_lead_unreplied", "overdue_minutes": 180},
        [RecentMessage(sender="lead", text="What's the price? I'm ready to book a call")],
    )
    cold = score_lead(NOW, _thread(), "cold", None, [])
    assert hot.score > cold.score
    assert hot.waiting_for_reply is True
    assert hot.reasons[0] == "Lead is already qualified."
    assert "Open alert: hot lead waiting on reply." in hot.reasons
    assert len(hot.reasons) <= MAX_REASONS


def test_waiting_tiers() -> None:
    def score_for(hours):
        inbound = NOW - timedelta(hours=hours)
        return score_lead(NOW, _thread(last_inbound_at=inbound), "none", None, [])

    fresh, mid, old = score_for(1), score_for(8), score_for(48)
    assert "Unread inbound message needs response." in fresh.reasons
    assert mid.reasons == ["Lead has been waiting 8h for a reply."]
    assert old.reasons == ["Lead has been waiting 48h for a reply."]


def test_outbound_after_inbound_is_not_waiting() -> None:
    result = score_lead(
        NOW,
        _thread(last_inbound_at=NOW - timedelta(hours=5), last_outbound_at=NOW - timedelta(hours=2)),
        "none",
        None,
        [],
    )
    assert result.waiting_for_reply is False


def test_last_message_direction_counts_as_inbound_instant() -> None:
    result = score_lead(
        NOW,
        _thread(last_message_at=NOW - timedelta(hours=1), last_message_direction="inbound"),
        "none",
        None,
        [],
    )
    assert result.waiting_for_reply is True


def test_disqualified_with_opt_out_sums_negative_terms() -> None:
    result = score_lead(
        NOW,
        _thread(lead_status="disqualified", last_message_direction="inbound",
                last_message_text="not interested, stop. not now"),
        "cold",
        None,
        [],
    )
    # -40 disqualified, -8 cold, +4 "interested" inside "not interested", -20 two risk labels
    assert result.score == -64
    assert any(r.startswith("Risk signals:") for r in result.reasons)


def test_generic_alert_weight_and_reason() -> None:
    result = score_lead(NOW, _thread(), "none", {"alert_type": "custom_check", "overdue_minutes": 0}, [])
    assert result.score == 5 + 12
    assert "Open alert: custom_check." in result.reasons


def test_only_lead_lines_feed_intent_signals() -> None:
    result = score_lead(
        NOW,
        _thread(),
        "none",
        None,
        [RecentMessage(sender="you", text="Want to book a call? pricing attached")],
    )
    assert not any(r.startswith("Intent signals") for r in result.reasons)


def test_extract_intent_signals_labels() -> None:
    signals = extract_intent_signals("Interested! What's your  pricing and availability?")
    assert signals.positive == ["pricing intent", "availability question", "buying interest"]
    assert signals.negative == []


def test_summarize_recent_messages_orders_and_trims() -> None:
    t0 = NOW - timedelta(hours=3)
    rows = [
        {"message_timestamp": t0 + timedelta(minutes=2), "direction": "outbound", "message_text": "second"},
        {"message_timestamp": t0, "direction": "inbound", "message_text": "first"},
        {"message_timestamp": t0 + timedelta(minutes=5), "direction": "inbound", "message_text": ""},
        {"message_timestamp": t0 + timedelta(minutes=9), "direction": "inbound",
         "raw_payload": {"message": {"text": "from payload"}}},
    ]
    out = summarize_recent_messages(rows, 3)
    assert [m.text for m in out] == ["second", "from payload"]
    assert [m.sender for m in out] == ["you", "lead"]
    assert out[0].model_dump(by_alias=True)["from"] == "you"


def test_disqualified_without_other_signals_stays_at_or_below_minus_35() -> None:
    result = score_lead(NOW, _thread(lead_status="disqualified"), "none", None, [])
    assert result.score == -40
    assert result.reasons == ["Lead is marked disqualified."]


def test_every_positive_term_is_clamped_to_100() -> None:
    inbound = NOW - timedelta(hours=30)
    result = score_lead(
        NOW,
        _thread(lead_status="qualified", priority=True, last_inbound_at=inbound, last_message_at=inbound,
                last_message_direction="inbound"),
        "hot",
        {"alert_type": "hot_lead_unreplied", "overdue_minutes": 24 * 60},
        [RecentMessage(sender="lead", text="Interested, what's the price? Available to book a call, ready to start")],
    )
    # 18 + 14 + 30 + 28 + 12 + 18 + 2 + 14 = 136 before clamping
    assert result.score == 100
    assert len(result.reasons) == MAX_REASONS


def test_positive_intent_is_capped_at_14() -> None:
    result = score_lead(
        NOW,
        _thread(),
        "none",
        None,
        [RecentMessage(sender="lead", text="price? available? book a call, ready, interested")],
    )
    assert extract_intent_signals("price? available? book a call, ready, interested").positive == [
        "pricing intent",
        "availability question",
        "call booking intent",
        "ready-to-start language",
        "buying interest",
    ]
    assert result.score == 5 + 14


def test_negative_intent_counts_each_label_once() -> None:
    text = "stop. not interested. remove me. not now, maybe later"
    result = score_lead(NOW, _thread(), "none", None, [RecentMessage(sender="lead", text=text)])
    signals = extract_intent_signals(text)
    assert signals.negative == ["opt-out language", "timing objection"]
    # "interested" also matches buying interest: 5 + 4 - 20, the -26 floor never binds with two labels
    assert result.score == 5 + 4 - 20
    assert "Risk signals: opt-out language, timing objection." in result.reasons


def test_overdue_alert_bonus_is_capped_at_12() -> None:
    def score_for(minutes):
        return score_lead(NOW, _thread(), "none", {"alert_type": "custom_check", "overdue_minutes": minutes}, [])

    assert score_for(150).score == 5 + 12 + 2
    assert score_for(11 * 60).score == 5 + 12 + 11
    assert score_for(48 * 60).score == 5 + 12 + 12
    assert "Alert overdue by 2880 minutes." in score_for(48 * 60).reasons


def test_recency_tiers() -> None:
    def score_for(hours):
        touched = NOW - timedelta(hours=hours)
        return score_lead(
            NOW,
            _thread(last_outbound_at=touched, last_message_at=touched, last_message_direction="outbound"),
            "none",
            None,
            [],
        ).score

    assert score_for(2) == 5 + 8
    assert score_for(4) == 5 + 8
    assert score_for(10) == 5 + 5
    assert score_for(48) == 5 + 2
    assert score_for(100) == 5
