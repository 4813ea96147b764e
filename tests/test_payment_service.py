"""Tests for applying 835 remittances and manual payments."""
from datetime import date
from decimal import Decimal

import pytest

from hcbilling.models import Charge, ClaimStatus, Payment
from hcbilling.services.billing.payment_service import (
    ManualClaimPayment,
    ManualLineItem,
    ManualPayment,
    ManualPaymentService,
    PaymentCreationService,
    paid_claims_table,
    restore_charges,
    restore_file,
    single_charge,
    validate_amount,
    validate_charge_adjustments,
    validate_date,
    validate_required,
)
from hcbilling.utils.errors import AccountingApiError, NotFoundError, PaymentCreationError, ValidationError
from tests.utils.edi_samples import interchange, jane_doe_remit, remit_835, remit_body


def charge_state(db_session):
    return {
        charge.charge_line: (charge.payment_ref, charge.payment, charge.payer_balance)
        for charge in db_session.query(Charge).order_by(Charge.charge_line)
    }


@pytest.mark.unit
class TestOperatorInput:
    """Tests for the manual entry validators."""

    def test_required(self):
        assert validate_required("  EFT1 ") == "EFT1"
        with pytest.raises(ValidationError, match="A value is required."):
            validate_required("  ")

    def test_amount(self):
        assert validate_amount("12.5") == Decimal("12.50")
        with pytest.raises(ValidationError, match="Value must be a number."):
            validate_amount("twelve")

    def test_date(self):
        assert validate_date("03/29/2024") == date(2024, 3, 29)
        with pytest.raises(ValidationError, match="Date must be in the format: mm/dd/yyyy."):
            validate_date("2024-03-29")


@pytest.mark.integration
class TestChargeHelpers:
    """Tests for single_charge and validate_charge_adjustments."""

    def test_single_charge(self, db_session, unbilled_charges):
        assert single_charge(unbilled_charges[:1]) is unbilled_charges[0]
        with pytest.raises(PaymentCreationError, match="No charges match this line item."):
            single_charge([])
        with pytest.raises(PaymentCreationError, match="Multiple charges matched."):
            single_charge(unbilled_charges)

    def test_contractual_adjustment_must_match_rates(self, db_session, unbilled_charges):
        """Test the reported write-off must equal billed minus contracted."""
        with pytest.raises(PaymentCreationError, match="contractual adjustment of \\$40.00, but \\$50.00 was expected"):
            validate_charge_adjustments(unbilled_charges[0], Decimal("40.00"))

    def test_adjustments_must_explain_payment(self, db_session, unbilled_charges):
        """Test billed minus adjustments must equal the paid amount."""
        with pytest.raises(PaymentCreationError, match="Adjustments add up to \\$60.00, but \\$70.00 was expected."):
            validate_charge_adjustments(
                unbilled_charges[0], Decimal("50.00"), Decimal("10.00"), Decimal("150.00"), Decimal("80.00")
            )


@pytest.mark.integration
class TestPaymentCreation:
    """Tests for PaymentCreationService."""

    def test_pays_claim(self, db_session, payment_service, fake_adapter, processed_claim):
        """Test a balanced remittance is applied and recorded."""
        result = payment_service.process_data(jane_doe_remit().encode(), filename="remit.835")

        outcome = result.payments[0]
        assert outcome.status == "processed"
        assert outcome.rows[-1] == {"Billing ID": "Total", "Billed Date": "", "Dates": "", "Client": "", "Paid": "$200.00"}

        payment = db_session.get(Payment, "EFT12345")
        assert payment.amount == Decimal("200.00")
        assert payment.payer_id == "PAYER001"
        assert processed_claim.status == ClaimStatus.PAID
        assert processed_claim.payment_ref == "EFT12345"

        qb_payment = fake_adapter.all("Payment")[0]
        assert qb_payment["TotalAmt"] == Decimal("200.00")
        assert [line["LinkedTxn"][0]["TxnType"] for line in qb_payment["Line"]] == ["Invoice", "CreditMemo"]
        assert [line["Amount"] for line in qb_payment["Line"]] == [Decimal("300.00"), Decimal("100.00")]

    def test_coinsurance_is_credited(self, db_session, payment_service, fake_adapter, processed_claim):
        """Test patient responsibility becomes a second credit memo."""
        payment_service.process_data(jane_doe_remit(paid="80.00", coinsurance="20.00").encode())

        credit_memos = fake_adapter.all("CreditMemo")
        assert [memo["TotalAmt"] for memo in credit_memos] == [Decimal("100.00"), Decimal("40.00")]
        assert len(processed_claim.qb_credit_memo_ids) == 2
        assert fake_adapter.all("Payment")[0]["TotalAmt"] == Decimal("160.00")

    def test_interest_is_invoiced(self, db_session, payment_service, fake_adapter, processed_claim):
        """Test PLB interest is invoiced and included in the payment."""
        payment_service.process_data(jane_doe_remit(provider_adjustments=[("L6", "-5.00")]).encode())

        interest = fake_adapter.all("Invoice")[1]
        assert interest["TotalAmt"] == Decimal("5.00")
        assert interest["PrivateNote"] == "EFT12345"
        payment = db_session.get(Payment, "EFT12345")
        assert payment.amount == Decimal("205.00")
        assert payment.provider_adjustments[0].qb_entity_id == interest["Id"]

    def test_duplicate_payment_is_skipped(self, db_session, payment_service, processed_claim):
        """Test a remittance is applied only once."""
        payment_service.process_data(jane_doe_remit().encode())

        result = payment_service.process_data(jane_doe_remit().encode())

        assert result.payments[0].status == "skipped"
        assert result.payments[0].message == "Payment EFT12345 has already been processed."

    def test_declined_payment(self, db_session, reconciliation, billing_settings, processed_claim):
        """Test declining the first prompt leaves the charges alone."""
        prompts = []
        service = PaymentCreationService(
            db_session, reconciliation, billing_settings, confirm=lambda prompt: prompts.append(prompt) and False
        )
        before = charge_state(db_session)

        result = service.process_data(jane_doe_remit().encode())

        assert result.payments[0].status == "declined"
        assert prompts == ["Did you receive a payment from ACME HEALTH for $200.00 on 2024-03-29?"]
        assert charge_state(db_session) == before

    def test_declined_after_review_restores_charges(self, db_session, reconciliation, billing_settings, processed_claim):
        """Test declining after the review puts the charges back."""
        reviewed = []
        service = PaymentCreationService(
            db_session,
            reconciliation,
            billing_settings,
            confirm=lambda prompt: prompt != "Continue?",
            review=reviewed.append,
        )
        before = charge_state(db_session)

        result = service.process_data(jane_doe_remit().encode())

        assert result.payments[0].status == "declined"
        assert reviewed[0][0]["Billing ID"] == "IN00004521"
        assert charge_state(db_session) == before

    def test_unmatched_line_restores_charges(self, db_session, payment_service, processed_claim):
        """Test a line without a charge undoes the lines applied before it."""
        lines = [
            ("90837", "150.00", "100.00", "20240304", "50.00", "0.00"),
            ("90837", "150.00", "100.00", "20240318", "50.00", "0.00"),
        ]
        before = charge_state(db_session)

        result = payment_service.process_data(remit_835([("IN00004521", "DOE", "JANE", lines)]).encode())

        assert result.has_errors
        assert result.payments[0].message == "No charges match this line item."
        assert charge_state(db_session) == before

    def test_partially_paid_claim_is_rejected(self, db_session, payment_service, processed_claim):
        """Test every touched claim must be paid in full."""
        lines = [("90837", "150.00", "100.00", "20240304", "50.00", "0.00")]

        result = payment_service.process_data(remit_835([("IN00004521", "DOE", "JANE", lines)]).encode())

        assert result.payments[0].message == (
            "The following claims have remaining balances after the payment is applied: IN00004521"
        )
        assert db_session.get(Charge, "4521").payment_ref is None

    def test_accounting_failure_restores_charges(self, db_session, payment_service, fake_adapter, processed_claim):
        """Test a rejected payment document puts the charges back."""
        fake_adapter.fail_on["Payment"] = AccountingApiError("Business Validation Error", intuit_code="6000")
        before = charge_state(db_session)

        result = payment_service.process_data(jane_doe_remit().encode())

        assert result.payments[0].status == "failed"
        assert charge_state(db_session) == before
        assert db_session.get(Payment, "EFT12345") is None

    def test_failure_does_not_stop_batch(self, db_session, payment_service, processed_claim):
        """Test later payments of a file are still applied."""
        bad = remit_body([("IN00009999", "ROE", "RICHARD", [("90837", "150.00", "100.00", "20240304", "50.00", "0.00")])], payment_ref="BAD1")
        good = remit_body(
            [
                (
                    "IN00004521",
                    "DOE",
                    "JANE",
                    [
                        ("90837", "150.00", "100.00", "20240304", "50.00", "0.00"),
                        ("90837", "150.00", "100.00", "20240311", "50.00", "0.00"),
                    ],
                )
            ]
        )
        data = interchange("HP", [("835", bad), ("835", good)])

        result = payment_service.process_data(data.encode())

        assert [outcome.status for outcome in result.payments] == ["failed", "processed"]
        assert not result.all_processed

    def test_process_file_moves_file(self, db_session, payment_service, billing_settings, processed_claim, tmp_path):
        path = tmp_path / "remit.835"
        path.write_text(jane_doe_remit())

        result = payment_service.process_file(path)

        assert result.moved_to == billing_settings.processed_payments_dir / "remit.835"
        assert not path.exists()

    def test_interest_only_payment(self, db_session, payment_service, fake_adapter, service):
        """Test a remittance carrying only interest is invoiced and paid."""
        data = remit_835([], payment_ref="INT1", provider_adjustments=[("L6", "-5.00")])

        result = payment_service.process_data(data.encode())

        assert result.payments[0].status == "processed"
        payment = db_session.get(Payment, "INT1")
        assert payment.amount == Decimal("5.00")
        assert payment.payer_id == "PAYER001"
        interest = fake_adapter.all("Invoice")[0]
        assert interest["TotalAmt"] == Decimal("5.00")
        qb_payment = fake_adapter.all("Payment")[0]
        assert qb_payment["TotalAmt"] == Decimal("5.00")
        assert [line["LinkedTxn"][0]["TxnId"] for line in qb_payment["Line"]] == [interest["Id"]]

    def test_payments_without_claims_fail_alone(self, db_session, payment_service, fake_adapter, processed_claim):
        """Test claimless payments with no known payer or nothing to apply fail without stopping the file."""
        unknown_payer = remit_body([], payment_ref="FEE1", payer="NOBODY", provider_adjustments=[("L6", "-5.00")])
        empty = remit_body([], payment_ref="EMPTY")
        good = remit_body(
            [
                (
                    "IN00004521",
                    "DOE",
                    "JANE",
                    [
                        ("90837", "150.00", "100.00", "20240304", "50.00", "0.00"),
                        ("90837", "150.00", "100.00", "20240311", "50.00", "0.00"),
                    ],
                )
            ]
        )
        data = interchange("HP", [("835", unknown_payer), ("835", empty), ("835", good)])

        result = payment_service.process_data(data.encode())

        assert [outcome.status for outcome in result.payments] == ["failed", "failed", "processed"]
        assert result.payments[0].message == "Payment FEE1 has no claims and no payer named NOBODY was found."
        assert result.payments[1].message == "Payment EMPTY has no claims to apply."
        assert db_session.get(Payment, "FEE1") is None
        assert len(fake_adapter.all("Payment")) == 1


@pytest.mark.integration
class TestRestore:
    """Tests for restore_charges and restore_file."""

    def apply(self, charges, payment_ref="EFT999"):
        for charge in charges:
            charge.apply_payment(date(2024, 3, 29), Decimal("100.00"), payment_ref, Decimal("0.00"))

    def test_restore_charges(self, db_session, unbilled_charges):
        """Test payment columns are cleared and the balance owed again."""
        self.apply(unbilled_charges)
        db_session.commit()

        restored = restore_charges(db_session, "EFT999")

        assert len(restored) == 2
        for charge in restored:
            assert charge.payment_ref is None
            assert charge.payment is None
            assert charge.payer_balance == Decimal("150.00")

    def test_restore_unknown_reference(self, db_session, unbilled_charges):
        with pytest.raises(NotFoundError, match="Charges for payment not found"):
            restore_charges(db_session, "NOPE")

    def test_recorded_payment_cannot_be_restored(self, db_session, payment_service, processed_claim):
        """Test a payment in the accounting system is never undone locally."""
        payment_service.process_data(jane_doe_remit().encode())

        with pytest.raises(PaymentCreationError, match="has already been recorded"):
            restore_charges(db_session, "EFT12345")

    def test_restore_file(self, db_session, unbilled_charges, tmp_path):
        """Test only half applied payments of a file are restored."""
        self.apply(unbilled_charges, "EFT12345")
        db_session.commit()
        path = tmp_path / "remit.835"
        path.write_text(jane_doe_remit())

        assert restore_file(db_session, path) == ["EFT12345"]
        assert db_session.get(Charge, "4521").payment_ref is None


@pytest.mark.integration
class TestManualPayment:
    """Tests for ManualPaymentService."""

    def payment(self, amount="200.00", lines=None):
        if lines is None:
            lines = [
                ManualLineItem(date(2024, 3, 4), "90837", Decimal("150.00"), Decimal("100.00")),
                ManualLineItem(date(2024, 3, 11), "90837", Decimal("150.00"), Decimal("100.00")),
            ]
        return ManualPayment(
            payment_ref="100234",
            payment_date=date(2024, 3, 29),
            amount=Decimal(amount),
            claims=[ManualClaimPayment("IN00004521", lines)],
        )

    def test_manual_payment(self, db_session, manual_payment_service, fake_adapter, processed_claim):
        """Test a check entered line by line is recorded."""
        outcome = manual_payment_service.process(self.payment())

        assert outcome.status == "processed"
        assert db_session.get(Payment, "100234").amount == Decimal("200.00")
        assert fake_adapter.all("Payment")[0]["PaymentRefNum"] == "100234"
        assert processed_claim.status == ClaimStatus.PAID

    def test_total_must_match(self, db_session, manual_payment_service, processed_claim):
        """Test the entered amount must equal the paid lines."""
        before = charge_state(db_session)

        with pytest.raises(PaymentCreationError, match="Payment total is not adding up. Please try again."):
            manual_payment_service.process(self.payment(amount="250.00"))
        assert charge_state(db_session) == before

    def test_all_claim_lines_required(self, db_session, manual_payment_service, processed_claim):
        """Test the lines must cover everything the claim billed."""
        lines = [ManualLineItem(date(2024, 3, 4), "90837", Decimal("150.00"), Decimal("100.00"))]

        with pytest.raises(PaymentCreationError, match="was billed for \\$300.00, but line items for \\$150.00 were entered."):
            manual_payment_service.process(self.payment(amount="100.00", lines=lines))

    def test_unknown_claim(self, db_session, manual_payment_service, processed_claim):
        manual = self.payment()
        manual.claims[0].billing_id = "IN99999999"

        with pytest.raises(NotFoundError, match="Claim not found"):
            manual_payment_service.process(manual)

    def test_duplicate_reference(self, db_session, manual_payment_service, processed_claim):
        manual_payment_service.process(self.payment())

        with pytest.raises(PaymentCreationError, match="Payment 100234 has already been processed."):
            manual_payment_service.process(self.payment())


@pytest.mark.integration
def test_paid_claims_table_lists_provider_adjustments(db_session, processed_claim):
    """Test adjustments get their own row and count toward the total."""
    from hcbilling.models import ProviderAdjustmentType
    from hcbilling.services.edi.models import ProviderAdjustment

    for charge in processed_claim.charges:
        charge.apply_payment(date(2024, 3, 29), Decimal("100.00"), "EFT1", Decimal("0.00"))

    rows = paid_claims_table([processed_claim], [ProviderAdjustment(ProviderAdjustmentType.ORIGINATION_FEE, Decimal("-2.50"))])

    assert rows[0]["Dates"] == "3/4-3/11"
    assert rows[0]["Client"] == "Doe, Jane"
    assert rows[1]["Billing ID"] == "Origination fee"
    assert rows[-1]["Paid"] == "$197.50"
