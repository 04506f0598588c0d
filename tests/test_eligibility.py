"""Channel eligibility: hard exclusions and ordering."""

from app.modules.messaging.eligibility import candidate_channels, determine_channels
from app.modules.messaging.schemas import MessageRecipient, NotificationPreferences

ALL = ["email", "push", "whatsapp", "sms", "inapp"]


def _recipient(**overrides):
    data = {
        "user_id": "u1",
        "email": "anna@example.com",
        "phone": "+393331234567",
        "push_tokens": ["tok"],
        "whatsapp_number": "+393331234567",
        "preferred_channel": "email",
    }
    data.update(overrides)
    return MessageRecipient(**data)


class TestDetermineChannels:
    def test_defaults_allow_every_channel_with_contact_info(self):
        channels = determine_channels(ALL, _recipient(), NotificationPreferences(), "transactional")
        assert sorted(channels) == sorted(ALL)

    def test_preferred_channel_first_then_fixed_priority(self):
        channels = determine_channels(ALL, _recipient(preferred_channel="whatsapp"), NotificationPreferences(), "transactional")
        assert channels == ["whatsapp", "inapp", "push", "email", "sms"]

    def test_preferred_channel_not_eligible(self):
        channels = determine_channels(["sms", "push"], _recipient(preferred_channel="email"), NotificationPreferences(), "health")
        assert channels == ["push", "sms"]

    def test_unsubscribed_excluded_even_when_requested(self):
        channels = determine_channels(["email", "push"], _recipient(unsubscribed=["email"]), NotificationPreferences(), "transactional")
        assert channels == ["push"]

    def test_disabled_channel_excluded(self):
        prefs = NotificationPreferences.model_validate({"push": {"enabled": False}})
        assert determine_channels(["push", "email"], _recipient(), prefs, "transactional") == ["email"]

    def test_marketing_flag_only_applies_to_marketing(self):
        prefs = NotificationPreferences.model_validate({"marketing": {"email": False}})
        assert determine_channels(["email"], _recipient(), prefs, "marketing") == []
        assert determine_channels(["email"], _recipient(), prefs, "transactional") == ["email"]

    def test_category_allow_list_with_emergency_exempt(self):
        prefs = NotificationPreferences.model_validate({"sms": {"categories": ["health"]}})
        assert determine_channels(["sms"], _recipient(), prefs, "marketing") == []
        assert determine_channels(["sms"], _recipient(), prefs, "health") == ["sms"]
        assert determine_channels(["sms"], _recipient(), prefs, "emergency") == ["sms"]

    def test_missing_contact_info(self):
        recipient = _recipient(email=None, phone=None, push_tokens=[], whatsapp_number=None)
        assert determine_channels(ALL, recipient, NotificationPreferences(), "transactional") == ["inapp"]

    def test_duplicates_dropped(self):
        assert determine_channels(["push", "push"], _recipient(), NotificationPreferences(), "transactional") == ["push"]


class TestCandidateChannels:
    def test_template_channels_by_default(self):
        assert candidate_channels(["email", "push"], None) == ["email", "push"]

    def test_request_intersected_with_template(self):
        assert candidate_channels(["email", "push"], ["push", "sms"]) == ["push"]

    def test_empty_request_means_no_channels(self):
        assert candidate_channels(["email", "push"], []) == []
