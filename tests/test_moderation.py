from chillconnect.services.moderation import flag_reasons, risk_score, screen


def test_clean_message_passes():
    flagged, score, reason = screen("Looking forward to our session tomorrow afternoon")
    assert not flagged
    assert score < 50
    assert reason is None


def test_phone_number_is_flagged():
    flagged, score, reason = screen("text me on 555-123-4567 instead")
    assert flagged
    assert score >= 50
    assert "phone number" in reason


def test_email_and_keywords_reported():
    reasons = flag_reasons("my gmail is someone@example.com")
    assert "email address" in reasons
    assert any(r.startswith("keywords:") and "gmail" in r for r in reasons)


def test_pressure_language_and_history_raise_score():
    base = risk_score("Please pay in cash")
    assert risk_score("Please pay in cash now, hurry", sender_flagged_count=2) == min(base + 20 + 20, 100)


def test_history_alone_does_not_flag_normal_text():
    flagged, score, _ = screen("See you at the agreed time then", sender_flagged_count=5)
    assert score == 30
    assert not flagged


def test_score_is_capped():
    assert risk_score("call 555 123 4567 now", sender_flagged_count=10) == 100
