"""Tests for the booking wizard."""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest
from conftest import ANA, BRUNO, CONSULTATION, HAIRCUT, NOBODY, RETIRED, make_appointment

from slotbook.booking.wizard import NO_PROVIDER_NOTICE, WizardStep
from slotbook.core.exceptions import SlotConflictException, ValidationException

LA_PAZ = ZoneInfo("America/La_Paz")
TOMORROW = date(2025, 1, 16)


def fill_selection(wizard, service_id=HAIRCUT.id, provider_id=ANA.id, day=TOMORROW, slot="10:00"):
    wizard.select_service(service_id)
    wizard.select_provider(provider_id)
    wizard.select_date(day)
    wizard.select_time(slot)


def fill_contact(wizard):
    wizard.set_contact(name="Carla Mendez", email="carla@example.com", phone="+591 7000 0000")


@pytest.mark.asyncio
async def test_fresh_wizard_starts_today_at_first_slot_past_lead_time(booking_session):
    wizard = booking_session.wizard()

    assert wizard.step == WizardStep.SELECTION
    assert wizard.date == date(2025, 1, 15)
    assert wizard.time == time(15, 0)


@pytest.mark.asyncio
async def test_inactive_services_are_not_offered(booking_session):
    wizard = booking_session.wizard()

    names = [service.name for service in wizard.selectable_services]

    assert RETIRED.name not in names
    assert names == sorted([HAIRCUT.name, CONSULTATION.name, NOBODY.name])


@pytest.mark.asyncio
async def test_selecting_service_auto_selects_first_eligible_provider(booking_session):
    wizard = booking_session.wizard()

    wizard.select_service(HAIRCUT.id)

    assert [p.id for p in wizard.eligible_providers] == [ANA.id, BRUNO.id]
    assert wizard.provider_id == ANA.id


@pytest.mark.asyncio
async def test_changing_service_drops_ineligible_provider(booking_session):
    wizard = booking_session.wizard()
    wizard.select_service(HAIRCUT.id)
    wizard.select_provider(BRUNO.id)

    wizard.select_service(CONSULTATION.id)

    assert wizard.provider_id == ANA.id


@pytest.mark.asyncio
async def test_service_without_providers_shows_notice(booking_session):
    wizard = booking_session.wizard()
    wizard.select_service(NOBODY.id)

    assert wizard.provider_id is None
    assert wizard.notice == NO_PROVIDER_NOTICE
    assert "provider_id" not in wizard.errors

    wizard.select_date(TOMORROW)
    wizard.select_time("10:00")
    wizard.next()
    fill_contact(wizard)
    wizard.next()

    with pytest.raises(ValidationException) as exc_info:
        wizard.build_pending_booking()
    assert exc_info.value.field == "provider_id"


@pytest.mark.asyncio
async def test_provider_change_snaps_time_to_their_schedule(booking_session):
    wizard = booking_session.wizard()
    wizard.select_service(HAIRCUT.id)
    wizard.select_provider(BRUNO.id)
    wizard.select_date(TOMORROW)
    wizard.select_time("19:00")

    wizard.select_provider(ANA.id)

    assert wizard.time == time(9, 0)
    assert wizard.available_times[-1] == time(17, 0)


@pytest.mark.asyncio
async def test_time_inside_lead_window_is_rejected(booking_session):
    wizard = booking_session.wizard()
    wizard.select_service(HAIRCUT.id)
    wizard.select_provider(BRUNO.id)
    wizard.select_date(date(2025, 1, 15))

    wizard.select_time("14:30")

    assert wizard.errors["time"] == "Choose a time at least 30 minutes from now"


@pytest.mark.asyncio
async def test_time_outside_business_hours_is_rejected(booking_session):
    wizard = booking_session.wizard()
    wizard.select_service(HAIRCUT.id)
    wizard.select_provider(BRUNO.id)
    wizard.select_date(TOMORROW)

    wizard.select_time("21:00")

    assert wizard.errors["time"] == "Choose a time within business hours"


@pytest.mark.asyncio
async def test_booked_time_is_rejected(booking_session, backend):
    backend.add(make_appointment(5, datetime(2025, 1, 16, 10, 0, tzinfo=LA_PAZ)))
    await booking_session.refresher.refresh(force=True)
    wizard = booking_session.wizard()
    fill_selection(wizard)

    assert wizard.errors["time"] == "That time is already booked"
    assert time(10, 0) not in wizard.available_times


@pytest.mark.asyncio
async def test_unparseable_date_is_no_date(booking_session):
    wizard = booking_session.wizard()
    wizard.select_service(HAIRCUT.id)

    wizard.select_date("16/01/2025")

    assert wizard.date is None
    assert wizard.availability.no_date_selected
    assert wizard.errors["date"] == "Select a valid date"


@pytest.mark.asyncio
async def test_next_blocks_on_invalid_step(booking_session):
    wizard = booking_session.wizard()
    fill_selection(wizard)

    assert wizard.next() is True
    assert wizard.step == WizardStep.CONTACT

    wizard.set_contact(name="  ", email="not-an-email")
    assert wizard.next() is False
    assert wizard.step == WizardStep.CONTACT
    assert set(wizard.errors) == {"name", "email"}

    fill_contact(wizard)
    assert wizard.next() is True
    assert wizard.step == WizardStep.REVIEW
    assert wizard.can_submit

    wizard.previous()
    assert wizard.step == WizardStep.CONTACT


@pytest.mark.asyncio
async def test_submit_returns_pending_booking(booking_session):
    wizard = booking_session.wizard()
    fill_selection(wizard)
    wizard.next()
    fill_contact(wizard)
    wizard.next()

    pending = await wizard.submit()

    assert pending.amount == HAIRCUT.price
    assert pending.service_name == HAIRCUT.name
    assert pending.provider_name == ANA.name
    assert pending.payload.scheduled_at == datetime(2025, 1, 16, 10, 0, tzinfo=LA_PAZ)
    assert pending.payload.client_email == "carla@example.com"


@pytest.mark.asyncio
async def test_submit_detects_slot_taken_since_display(booking_session, backend):
    wizard = booking_session.wizard()
    fill_selection(wizard)
    wizard.next()
    fill_contact(wizard)
    wizard.next()

    backend.add(make_appointment(6, datetime(2025, 1, 16, 10, 0, tzinfo=LA_PAZ)))

    with pytest.raises(SlotConflictException):
        await wizard.submit()

    assert time(10, 0) not in wizard.available_times
    assert wizard.time != time(10, 0)
    assert wizard.warning


@pytest.mark.asyncio
async def test_reset_returns_to_empty_form(booking_session):
    wizard = booking_session.wizard()
    fill_selection(wizard)
    fill_contact(wizard)

    wizard.reset()

    assert wizard.step == WizardStep.SELECTION
    assert wizard.service_id is None
    assert wizard.name == ""
    assert wizard.errors == {}


@pytest.mark.asyncio
async def test_contact_email_uses_submission_rules(booking_session):
    wizard = booking_session.wizard()
    fill_selection(wizard)
    wizard.next()

    wizard.set_contact(name="Carla Mendez", email="carla..mendez@example.com")
    assert wizard.next() is False
    assert wizard.errors["email"] == "Enter a valid email address"

    wizard.set_contact(email="  carla@example.com ")
    assert wizard.next() is True

    pending = await wizard.submit()

    assert pending.payload.client_email == "carla@example.com"
