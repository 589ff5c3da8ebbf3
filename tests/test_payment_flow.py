"""Tests for the payment confirmation machine."""

import asyncio
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from conftest import ANA, CONSULTATION, HAIRCUT, make_appointment

from slotbook.booking.payment_flow import (
    PaymentMethod,
    PaymentStage,
    PaymentStep,
    generate_seed,
    render_qr_png,
)
from slotbook.core.exceptions import (
    AppException,
    NetworkException,
    SlotConflictException,
    StateConflictException,
)
from slotbook.schemas.appointments import AppointmentStatus
from slotbook.schemas.payments import PaymentStatus

TOMORROW = date(2025, 1, 16)


async def submitted_booking(session, service_id=HAIRCUT.id):
    wizard = session.wizard()
    wizard.select_service(service_id)
    wizard.select_provider(ANA.id)
    wizard.select_date(TOMORROW)
    wizard.select_time("10:00")
    wizard.next()
    wizard.set_contact(name="Carla Mendez", email="carla@example.com")
    wizard.next()
    return wizard, await wizard.submit()


def make_machine(session, wizard=None, seed="K3X9Q2"):
    machine = session.payment_machine(wizard)
    machine.seed_factory = MagicMock(return_value=seed)
    return machine


def test_generate_seed_is_six_base36_characters():
    seed = generate_seed()

    assert len(seed) == 6
    assert seed == seed.upper()
    assert seed.isalnum()


def test_method_labels():
    assert PaymentMethod.QR.label == "QR transfer"
    assert PaymentMethod.CARD.label == "Debit card"


@pytest.mark.asyncio
async def test_seed_survives_method_changes(booking_session):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)

    machine.select_method("qr")
    assert machine.stage == PaymentStage.QR
    first_reference = machine.transaction_reference

    machine.change_method()
    machine.select_method(PaymentMethod.CARD)

    assert machine.stage == PaymentStage.CARD
    assert machine.transaction_reference == first_reference == "PAY-PRE-K3X9Q2"
    machine.seed_factory.assert_called_once()


@pytest.mark.asyncio
async def test_reference_without_seed_is_just_the_prefix(booking_session):
    machine = make_machine(booking_session)

    assert machine.transaction_reference == "PAY"


@pytest.mark.asyncio
async def test_qr_descriptor_and_image(booking_session):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")

    descriptor = machine.qr_descriptor()

    assert descriptor.endswith("-PAY-PRE-K3X9Q2|SERVICE:Haircut|AMOUNT:80.00")
    assert machine.render_qr().startswith(b"\x89PNG")


def test_render_qr_png_returns_png():
    assert render_qr_png("hello").startswith(b"\x89PNG")


@pytest.mark.asyncio
async def test_confirm_requires_a_method(booking_session):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)

    with pytest.raises(StateConflictException):
        await machine.confirm()


@pytest.mark.asyncio
async def test_successful_confirmation_runs_three_writes(booking_session, backend, sink):
    wizard, pending = await submitted_booking(booking_session)
    on_success = MagicMock()
    machine = make_machine(booking_session, wizard)
    machine.on_success = on_success
    machine.open(pending)
    machine.select_method("card")

    appointment = await machine.confirm()

    assert machine.stage == PaymentStage.SUCCESS
    assert appointment.status == AppointmentStatus.PAID
    assert backend.calls["create_appointment"] == 1
    assert backend.calls["create_payment"] == 1
    assert backend.calls["update_appointment"] == 1

    payment = backend.payments[0]
    assert payment.amount == Decimal("80.00")
    assert payment.method == "Debit card"
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.transaction_ref == f"PAY-{appointment.id}-K3X9Q2"
    assert payment.paid_at is not None

    assert f"payment_confirmed-{appointment.id}" in sink.keys
    on_success.assert_called_once_with(appointment)
    assert booking_session.snapshot.get(appointment.id).status == AppointmentStatus.PAID


@pytest.mark.asyncio
async def test_success_resets_the_wizard(booking_session):
    wizard, pending = await submitted_booking(booking_session)
    machine = booking_session.payment_machine(wizard)
    machine.open(pending)
    machine.select_method("qr")

    await machine.confirm()

    assert wizard.service_id is None
    assert wizard.name == ""


@pytest.mark.asyncio
async def test_free_service_skips_payment_record(booking_session, backend):
    _, pending = await submitted_booking(booking_session, service_id=CONSULTATION.id)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")

    appointment = await machine.confirm()

    assert appointment.status == AppointmentStatus.PAID
    assert backend.calls["create_payment"] == 0
    assert backend.payments == []


@pytest.mark.asyncio
async def test_failed_payment_write_resumes_without_duplicate_appointment(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    backend.failures["create_payment"].append(NetworkException())

    with pytest.raises(NetworkException):
        await machine.confirm()

    assert machine.stage == PaymentStage.ERROR
    assert machine.failed_step == PaymentStep.CREATE_PAYMENT
    assert machine.can_retry
    assert machine.error_message.startswith("Recording your payment failed")
    created = list(backend.appointments.values())
    assert len(created) == 1
    assert created[0].status == AppointmentStatus.PENDING

    appointment = await machine.retry()

    assert appointment.status == AppointmentStatus.PAID
    assert backend.calls["create_appointment"] == 1
    assert backend.calls["create_payment"] == 2
    assert len(backend.payments) == 1
    assert len(backend.appointments) == 1
    assert backend.payments[0].transaction_ref == f"PAY-{appointment.id}-K3X9Q2"


@pytest.mark.asyncio
async def test_failed_status_update_retries_only_the_status(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    backend.failures["update_appointment"].append(NetworkException())

    with pytest.raises(NetworkException):
        await machine.confirm()
    assert machine.failed_step == PaymentStep.MARK_PAID

    await machine.retry()

    assert backend.calls["create_appointment"] == 1
    assert backend.calls["create_payment"] == 1
    assert backend.calls["update_appointment"] == 2


@pytest.mark.asyncio
async def test_slot_taken_before_creation_fails_first_step(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    await backend.create_appointment(pending.payload)

    with pytest.raises(SlotConflictException):
        await machine.confirm()

    assert machine.failed_step == PaymentStep.CREATE_APPOINTMENT
    assert machine.appointment is None
    assert backend.calls["create_appointment"] == 1


@pytest.mark.asyncio
async def test_unexpected_errors_are_wrapped(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    backend.failures["create_appointment"].append(RuntimeError("socket closed"))

    with pytest.raises(AppException) as exc_info:
        await machine.confirm()

    assert exc_info.value.message == "Something went wrong, please try again"
    assert machine.stage == PaymentStage.ERROR


@pytest.mark.asyncio
async def test_abandoning_after_booking_flags_reconciliation(booking_session, backend, sink):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    backend.failures["create_payment"].append(NetworkException())
    with pytest.raises(NetworkException):
        await machine.confirm()
    appointment_id = machine.appointment.id

    machine.close()

    assert f"reconciliation_required-{appointment_id}" in sink.keys
    assert machine.stage == PaymentStage.METHOD
    assert machine.pending is None
    assert backend.appointments[appointment_id].status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_method_cannot_change_after_success(booking_session):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    await machine.confirm()

    with pytest.raises(StateConflictException):
        machine.change_method()
    with pytest.raises(StateConflictException):
        machine.select_method("card")


async def cancel_during_payment_write(machine, backend):
    """Start ``confirm`` and cancel it while the payment write is in flight."""
    entered = asyncio.Event()
    record_payment = backend.create_payment

    async def stalled_create_payment(payload):
        entered.set()
        await asyncio.Event().wait()
        return await record_payment(payload)

    backend.create_payment = stalled_create_payment
    task = asyncio.create_task(machine.confirm())
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    del backend.create_payment


@pytest.mark.asyncio
async def test_cancelled_confirm_can_be_retried(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")

    await cancel_during_payment_write(machine, backend)

    assert machine.stage == PaymentStage.ERROR
    assert machine.failed_step == PaymentStep.CREATE_PAYMENT
    assert machine.can_retry
    assert machine.error_message.startswith("Recording your payment failed")
    appointment_id = machine.appointment.id

    appointment = await machine.retry()

    assert appointment.id == appointment_id
    assert appointment.status == AppointmentStatus.PAID
    assert backend.calls["create_appointment"] == 1
    assert len(backend.payments) == 1


@pytest.mark.asyncio
async def test_cancelled_confirm_can_be_closed(booking_session, backend, sink):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("card")
    await cancel_during_payment_write(machine, backend)
    appointment_id = machine.appointment.id

    machine.close()

    assert machine.stage == PaymentStage.METHOD
    assert f"reconciliation_required-{appointment_id}" in sink.keys
    machine.open(pending)
    assert machine.pending is pending


@pytest.mark.asyncio
async def test_lost_payment_reply_counts_as_recorded(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    backend.lost_replies.add("create_payment")

    with pytest.raises(NetworkException):
        await machine.confirm()
    assert machine.failed_step == PaymentStep.CREATE_PAYMENT
    assert len(backend.payments) == 1

    appointment = await machine.retry()

    assert appointment.status == AppointmentStatus.PAID
    assert machine.stage == PaymentStage.SUCCESS
    assert machine.payment_recorded
    assert backend.calls["create_payment"] == 2
    assert len(backend.payments) == 1


@pytest.mark.asyncio
async def test_lost_appointment_reply_adopts_the_created_appointment(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    backend.lost_replies.add("create_appointment")

    with pytest.raises(NetworkException):
        await machine.confirm()
    assert machine.failed_step == PaymentStep.CREATE_APPOINTMENT
    assert machine.appointment is None
    (created,) = backend.appointments.values()

    appointment = await machine.retry()

    assert appointment.id == created.id
    assert appointment.status == AppointmentStatus.PAID
    assert backend.calls["create_appointment"] == 1
    assert len(backend.appointments) == 1
    assert backend.payments[0].transaction_ref == f"PAY-{created.id}-K3X9Q2"


@pytest.mark.asyncio
async def test_unanswered_create_does_not_adopt_another_clients_booking(booking_session, backend):
    _, pending = await submitted_booking(booking_session)
    machine = make_machine(booking_session)
    machine.open(pending)
    machine.select_method("qr")
    backend.failures["create_appointment"].append(NetworkException())

    with pytest.raises(NetworkException):
        await machine.confirm()
    backend.add(
        make_appointment(500, pending.payload.scheduled_at, client_email="diego@example.com")
    )

    with pytest.raises(SlotConflictException):
        await machine.retry()

    assert machine.appointment is None
    assert machine.failed_step == PaymentStep.CREATE_APPOINTMENT
    assert backend.calls["create_appointment"] == 1
