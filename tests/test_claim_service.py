"""Tests for claim creation from 837 files."""
from datetime import date
from decimal import Decimal

import pytest

from hcbilling.config.settings import AccountingSettings
from hcbilling.models import Appointment, Claim, ClaimStatus
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.claim_service import (
    ClaimCreationService,
    find_claim_file,
    validate_appointments,
)
from hcbilling.utils.errors import AccountingApiError, ClaimCreationError, ConfigurationError
from tests.utils.edi_samples import claim_837, jane_doe_claim, jane_doe_remit


@pytest.mark.integration
class TestClaimCreation:
    """Tests for ClaimCreationService.process_claims."""

    def test_creates_claim_invoice_and_credit_memo(self, db_session, claim_service, fake_adapter, unbilled_charges):
        """Test a matched claim is invoiced and its contractual adjustment credited."""
        result = claim_service.process_data(jane_doe_claim().encode(), filename="claims.txt")

        assert result.all_processed
        assert result.next_claim_date == date(2024, 3, 20)
        claim = result.claims[0]
        assert claim.billing_id == "IN00004521"
        assert claim.status == ClaimStatus.PROCESSED
        assert [charge.charge_line for charge in claim.charges] == ["4521", "4522"]

        invoice = fake_adapter.all("Invoice")[0]
        credit_memo = fake_adapter.all("CreditMemo")[0]
        assert claim.qb_invoice_id == invoice["Id"]
        assert claim.qb_credit_memo_ids == [credit_memo["Id"]]
        assert invoice["TotalAmt"] == Decimal("300.00")
        assert credit_memo["TotalAmt"] == Decimal("100.00")
        assert "Created invoice 1001 for $300.00." in result.messages
        assert "Claim IN00004521 has been processed successfully." in result.messages

    def test_confirmation_prompt(self, db_session, documents, billing_settings, unbilled_charges):
        """Test the operator sees the claim summary before it is sent."""
        prompts = []
        service = ClaimCreationService(
            db_session, documents, billing_settings, confirm=lambda prompt: prompts.append(prompt) or True
        )

        service.process_data(jane_doe_claim().encode())

        assert prompts == [
            "Create claim IN00004521 for Doe, Jane from 03/04/2024 to 03/11/2024 for $300.00 (contracted $200.00)?"
        ]

    def test_declined_claim_is_skipped(self, db_session, documents, billing_settings, fake_adapter, unbilled_charges):
        """Test a declined claim creates nothing."""
        service = ClaimCreationService(db_session, documents, billing_settings, confirm=lambda prompt: False)

        result = service.process_data(jane_doe_claim().encode())

        assert result.declined == ["4521"]
        assert not result.all_processed
        assert fake_adapter.all("Invoice") == []
        assert db_session.query(Claim).count() == 0

    def test_wrong_claim_date(self, db_session, claim_service, unbilled_charges):
        """Test claims must be processed in billed date order."""
        with pytest.raises(ClaimCreationError, match="The next claim date should be 2024-03-20 but this claim is on 2024-03-21."):
            claim_service.process_data(jane_doe_claim(billed_date="20240321").encode())

    def test_no_claims_left(self, db_session, claim_service, service):
        """Test nothing happens when no completed appointment awaits a claim."""
        result = claim_service.process_data(jane_doe_claim().encode())

        assert result.claims == []
        assert result.messages == ["There are no more claims to process."]

    def test_no_matching_charges(self, db_session, claim_service, unbilled_charges):
        """Test an 837 claim for an unknown client."""
        data = claim_837([("4600", "ROE", "RICHARD", [("90837", "150.00", 1, "20240304")])])

        with pytest.raises(ClaimCreationError, match="No charges found for the given parameters."):
            claim_service.process_data(data.encode())

    def test_claim_total_mismatch(self, db_session, claim_service, unbilled_charges):
        """Test CLM02 must equal the matched charges."""
        data = jane_doe_claim().replace("CLM*4521*300.00", "CLM*4521*350.00")

        with pytest.raises(ClaimCreationError, match="does not match the total of the matched charges"):
            claim_service.process_data(data.encode())

    def test_partially_matched_claim(self, db_session, claim_service, unbilled_charges):
        """Test a claim whose lines only partly match stored charges."""
        data = claim_837(
            [("4521", "DOE", "JANE", [("90837", "150.00", 1, "20240304"), ("90837", "150.00", 1, "20240325")])]
        )

        with pytest.raises(ClaimCreationError, match="Not all charges could be matched."):
            claim_service.process_data(data.encode())

    def test_failed_credit_memo_removes_invoice(self, db_session, claim_service, fake_adapter, unbilled_charges):
        """Test the invoice is deleted when the credit memo cannot be created."""
        fake_adapter.fail_on["CreditMemo"] = AccountingApiError("Business Validation Error", intuit_code="6000")

        with pytest.raises(AccountingApiError):
            claim_service.process_data(jane_doe_claim().encode())

        assert fake_adapter.all("Invoice") == []
        assert fake_adapter.deleted[0][0] == "Invoice"
        assert db_session.query(Claim).count() == 0

    def test_missing_payment_term(self, db_session, fake_adapter, billing_settings, unbilled_charges):
        """Test nothing is invoiced without a payment term."""
        documents = AccountingDocuments(fake_adapter, AccountingSettings(contractual_adjustment_item_id="CA"))
        service = ClaimCreationService(db_session, documents, billing_settings)

        with pytest.raises(ConfigurationError):
            service.process_data(jane_doe_claim().encode())
        assert fake_adapter.all("Invoice") == []


@pytest.mark.integration
class TestJournalEntryReversal:
    """Tests for the removal of accruals of billed appointments."""

    def accrue(self, documents, appointment):
        entry = documents.create_accrued_revenue_entry(appointment, "1045")
        appointment.qb_journal_entry_id = entry["Id"]
        appointment.qb_journal_entry_doc_number = entry["DocNumber"]
        return entry

    def test_accrual_in_billed_month_is_deleted(self, db_session, claim_service, documents, fake_adapter, unbilled_charges):
        """Test appointments billed in their own month lose their accrual."""
        appointment = db_session.get(Appointment, "A4521")
        entry = self.accrue(documents, appointment)
        db_session.commit()

        claim_service.process_data(jane_doe_claim().encode())

        assert fake_adapter.deleted == [("JournalEntry", entry["Id"])]
        assert appointment.qb_journal_entry_id is None
        assert appointment.qb_journal_entry_doc_number is None

    def test_accrual_from_earlier_month_is_reversed(self, db_session, claim_service, documents, fake_adapter, unbilled_charges):
        """Test an accrual in a closed month is reversed on the billed date."""
        appointment = db_session.get(Appointment, "A4521")
        appointment.service_date = date(2024, 2, 26)
        self.accrue(documents, appointment)

        claim_service.reverse_journal_entries([appointment])

        reversal = fake_adapter.get("JournalEntry", appointment.qb_reversing_journal_entry_id)
        assert reversal["DocNumber"] == "1045R"
        assert reversal["TxnDate"] == "2024-03-20"
        assert fake_adapter.deleted == []

    def test_nothing_to_reverse(self, db_session, claim_service, unbilled_charges):
        claim_service.reverse_journal_entries(db_session.query(Appointment).all())

        assert claim_service._messages == ["No unbilled appointments to reverse."]


@pytest.mark.unit
def test_validate_appointments_lists_unlinked_charges(db_session, unbilled_charges):
    """Test every charge needs an appointment linked to it."""
    appointment = db_session.get(Appointment, "A4521")

    with pytest.raises(ClaimCreationError, match="The remaining charges do not have connected appointments: 4522"):
        validate_appointments(unbilled_charges, [appointment])


@pytest.mark.integration
class TestClaimFiles:
    """Tests for file discovery and moving."""

    def test_process_file_moves_file(self, db_session, claim_service, billing_settings, unbilled_charges, tmp_path):
        """Test a fully processed file ends up in the processed directory."""
        path = tmp_path / "claims.txt"
        path.write_text(jane_doe_claim())

        result = claim_service.process_file(path)

        assert result.moved_to == billing_settings.processed_claims_dir / "claims.txt"
        assert result.moved_to.exists()
        assert not path.exists()

    def test_declined_file_stays(self, db_session, documents, billing_settings, unbilled_charges, tmp_path):
        """Test a file with a declined claim is not moved."""
        path = tmp_path / "claims.txt"
        path.write_text(jane_doe_claim())
        service = ClaimCreationService(db_session, documents, billing_settings, confirm=lambda prompt: False)

        result = service.process_file(path)

        assert result.moved_to is None
        assert path.exists()

    def test_find_claim_file_skips_other_files(self, tmp_path):
        """Test remittances and natural ordering when picking a claim file."""
        (tmp_path / "a.txt").write_text(jane_doe_remit())
        (tmp_path / "claims10.txt").write_text(jane_doe_claim())
        (tmp_path / "claims2.txt").write_text(jane_doe_claim())

        assert find_claim_file(tmp_path) == tmp_path / "claims2.txt"

    def test_empty_directory(self, db_session, claim_service, tmp_path):
        with pytest.raises(ClaimCreationError, match="No valid EDI 837 files were found."):
            claim_service.process_directory(tmp_path)
