"""
Tests for the Notification Dispatcher.

Covers:
- Silent mode override rules
- One NotificationRecord per recipient, pushed or not
- Failure isolation between recipients
- The traveler check-in reminder path
"""
import pytest

from rientro.models.enums import NotificationType, SoundProfile, UrgencyTier
from rientro.models.schemas import GeoPoint, Trip
from rientro.services.notifications import AlertTemplates, DeliveryStatus

from helpers import NOW, make_contact_row, make_trip_row, make_user_row


def build_trip(**kwargs) -> Trip:
    return Trip.from_record(make_trip_row(**kwargs))


class TestAlertMessages:
    """Templates and payload shape."""

    @pytest.mark.unit
    def test_titles(self):
        trip = build_trip()

        assert AlertTemplates.rientro_started(trip, "Giulia").title == "Trip started"
        assert AlertTemplates.emergency(trip, "Giulia").title == "⚠️ EMERGENCY"
        assert AlertTemplates.sos(trip, "Giulia").title == "🆘 SOS ACTIVATED"
        assert AlertTemplates.rientro_completed(trip, "Giulia").title == "Trip completed ✓"
        assert AlertTemplates.check_in(trip).title == "Everything OK?"

    @pytest.mark.unit
    def test_emergency_payload_carries_location(self):
        trip = build_trip(trip_id="trip-1", last_known_location={"lat": 45.46, "lng": 9.19})

        push = AlertTemplates.emergency(trip, "Giulia").to_push("token-x")

        assert push.urgency_tier == UrgencyTier.CRITICAL
        assert push.sound_profile == SoundProfile.CRITICAL
        assert push.channel_id == "rientro_emergency"
        assert push.data == {
            "type": "emergency",
            "tripId": "trip-1",
            "ownerId": "user-1",
            "ownerName": "Giulia",
            "lat": "45.46",
            "lng": "9.19",
            "mapsUrl": "https://www.google.com/maps/search/?api=1&query=45.46,9.19",
        }

    @pytest.mark.unit
    def test_non_emergency_payload_is_high_without_location(self):
        trip = build_trip(last_known_location={"lat": 45.0, "lng": 9.0})

        push = AlertTemplates.rientro_started(trip, "Giulia").to_push("token-x")

        assert push.urgency_tier == UrgencyTier.HIGH
        assert push.sound_profile == SoundProfile.DEFAULT
        assert push.channel_id == "rientro_default"
        assert "lat" not in push.data
        assert all(isinstance(v, str) for v in push.data.values())

    @pytest.mark.unit
    def test_check_in_channel(self):
        push = AlertTemplates.check_in(build_trip()).to_push("token-x")

        assert push.channel_id == "rientro_checkin"
        assert push.urgency_tier == UrgencyTier.HIGH


class TestSilentMode:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_silent_started_sends_to_nobody(self, dispatcher, push_transport, seeded_people):
        trip = build_trip(silent_mode=True)

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.rientro_started(trip, "Giulia"), silent_mode=True
        )

        assert result.suppressed is True
        assert result.attempted == 0
        assert push_transport.sent == []
        assert seeded_people["notifications"] == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_silent_completed_sends_to_nobody(self, dispatcher, push_transport, seeded_people):
        trip = build_trip(silent_mode=True, status="completed")

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.rientro_completed(trip, "Giulia"), silent_mode=True
        )

        assert result.suppressed is True
        assert push_transport.sent == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("template", ["emergency", "sos"])
    async def test_emergency_types_override_silent_mode(
        self, dispatcher, push_transport, seeded_people, template
    ):
        trip = build_trip(silent_mode=True, status="emergency", escalation_level=3)
        message = getattr(AlertTemplates, template)(trip, "Giulia")

        result = await dispatcher.dispatch(trip.contact_ids, message, silent_mode=True)

        assert result.suppressed is False
        assert result.delivered_count == 2
        assert sorted(push_transport.destinations()) == ["token-contact-1", "token-contact-2"]
        assert set(push_transport.types()) == {template}


class TestRecords:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_record_per_recipient_even_without_push_address(
        self, dispatcher, push_transport, mock_data
    ):
        mock_data["contacts"].extend([
            make_contact_row("contact-1"),
            make_contact_row("contact-2", fcm_token=None),
            make_contact_row("contact-3", fcm_token="   "),
        ])
        trip = build_trip(contact_ids=["contact-1", "contact-2", "contact-3"])

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.rientro_started(trip, "Giulia"), silent_mode=False
        )

        records = {r["contact_id"]: r for r in mock_data["notifications"]}
        assert set(records) == {"contact-1", "contact-2", "contact-3"}
        assert records["contact-1"]["delivered"] is True
        assert records["contact-2"]["delivered"] is False
        assert records["contact-3"]["delivered"] is False
        assert push_transport.destinations() == ["token-contact-1"]

        statuses = {o.recipient_id: o.status for o in result.outcomes}
        assert statuses["contact-2"] == DeliveryStatus.RECORDED_ONLY
        assert result.success is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_record_contents_and_last_notified(self, dispatcher, seeded_people):
        trip = build_trip(trip_id="trip-9")

        await dispatcher.dispatch(
            ["contact-1"], AlertTemplates.rientro_started(trip, "Giulia"), silent_mode=False
        )

        record = seeded_people["notifications"][0]
        assert record["trip_id"] == "trip-9"
        assert record["type"] == NotificationType.RIENTRO_STARTED.value
        assert record["title"] == "Trip started"
        assert record["sent_at"] == NOW.isoformat()
        assert record["user_id"] is None

        contact = next(c for c in seeded_people["contacts"] if c["id"] == "contact-1")
        assert contact["last_notified_at"] == NOW.isoformat()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_contact_is_missing_without_record(self, dispatcher, seeded_people):
        trip = build_trip(contact_ids=["contact-1", "ghost"])

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.rientro_started(trip, "Giulia"), silent_mode=False
        )

        statuses = {o.recipient_id: o.status for o in result.outcomes}
        assert statuses == {"contact-1": DeliveryStatus.DELIVERED, "ghost": DeliveryStatus.MISSING}
        assert [r["contact_id"] for r in seeded_people["notifications"]] == ["contact-1"]


class TestFailureIsolation:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_push_failure_still_records_every_contact(
        self, dispatcher, push_transport, seeded_people
    ):
        push_transport.fail_for.add("token-contact-1")
        trip = build_trip(status="emergency", escalation_level=3)

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.emergency(trip, "Giulia"), silent_mode=False
        )

        records = {r["contact_id"]: r["delivered"] for r in seeded_people["notifications"]}
        assert records == {"contact-1": False, "contact-2": True}
        assert push_transport.destinations() == ["token-contact-2"]

        failed = result.failures
        assert [o.recipient_id for o in failed] == ["contact-1"]
        assert failed[0].status == DeliveryStatus.FAILED
        assert result.success is False

        # last_notified_at is touched whether or not delivery worked
        assert all(c["last_notified_at"] == NOW.isoformat() for c in seeded_people["contacts"])

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stuck_push_hits_deadline(self, dispatcher, push_transport, seeded_people):
        push_transport.hang_for.add("token-contact-2")
        trip = build_trip(status="emergency", escalation_level=3)

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.emergency(trip, "Giulia"), silent_mode=False
        )

        outcome = next(o for o in result.outcomes if o.recipient_id == "contact-2")
        assert outcome.status == DeliveryStatus.FAILED
        assert outcome.error.details["operation"] == "push.send"
        assert outcome.recorded is True
        assert push_transport.destinations() == ["token-contact-1"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_failure_on_lookup_does_not_block_others(
        self, dispatcher, push_transport, seeded_people, fresh_mock_client
    ):
        fresh_mock_client.fail_on.add(("contacts", "select"))
        trip = build_trip()

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.emergency(trip, "Giulia"), silent_mode=False
        )

        assert result.attempted == 2
        assert all(o.status == DeliveryStatus.ERROR for o in result.outcomes)
        assert push_transport.sent == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_record_insert_failure_is_reported(
        self, dispatcher, push_transport, seeded_people, fresh_mock_client
    ):
        fresh_mock_client.fail_on.add(("notifications", "insert"))
        trip = build_trip()

        result = await dispatcher.dispatch(
            trip.contact_ids, AlertTemplates.rientro_started(trip, "Giulia"), silent_mode=False
        )

        assert result.delivered_count == 2
        assert len(result.failures) == 2
        assert all(o.recorded is False for o in result.outcomes)


class TestCheckInReminder:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reminder_goes_to_traveler(self, dispatcher, push_transport, seeded_people):
        trip = build_trip(trip_id="trip-r", status="late", escalation_level=1)

        result = await dispatcher.send_check_in_reminder(trip)

        assert result.delivered_count == 1
        assert push_transport.destinations() == ["traveler-token"]
        assert push_transport.sent[0].data["type"] == "check_in"

        record = seeded_people["notifications"][0]
        assert record["user_id"] == "user-1"
        assert record["contact_id"] is None
        assert record["delivered"] is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reminder_suppressed_in_silent_mode(self, dispatcher, push_transport, seeded_people):
        trip = build_trip(status="late", escalation_level=2, silent_mode=True)

        result = await dispatcher.send_check_in_reminder(trip)

        assert result.suppressed is True
        assert push_transport.sent == []
        assert seeded_people["notifications"] == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_traveler_without_token_is_recorded_only(self, dispatcher, push_transport, mock_data):
        mock_data["users"].append(make_user_row("user-1", fcm_token=None))
        trip = build_trip(status="late", escalation_level=1)

        result = await dispatcher.send_check_in_reminder(trip)

        assert result.outcomes[0].status == DeliveryStatus.RECORDED_ONLY
        assert mock_data["notifications"][0]["delivered"] is False
        assert push_transport.sent == []


class TestGeoPoint:

    @pytest.mark.unit
    def test_maps_url(self):
        point = GeoPoint(lat=41.9, lng=12.5)
        assert point.maps_url == "https://www.google.com/maps/search/?api=1&query=41.9,12.5"
