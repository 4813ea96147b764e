"""Builders for small but complete 835 and 837 files."""
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from hcbilling.utils.decimal_utils import money_add, money_sum

ISA = "ISA*00*          *00*          *ZZ*SENDER         *ZZ*RECEIVER       *240329*1200*^*00501*{control}*0*P*:"

# (billing code, billed, paid, service date, contractual adjustment, coinsurance)
RemitLine = Tuple[str, str, str, str, str, str]
# (claim id, last name, first name, lines)
RemitClaim = Tuple[str, str, str, Sequence[RemitLine]]
# (billing code, billed, units, service date)
ClaimLine = Tuple[str, str, int, str]
# (claim id, last name, first name, lines)
ClaimData = Tuple[str, str, str, Sequence[ClaimLine]]


def interchange(
    functional_code: str,
    transaction_sets: Sequence[Tuple[str, List[str]]],
    control: str = "000000101",
    group_control: str = "101",
    trailer_control: Optional[str] = None,
    group_count: Optional[int] = None,
) -> str:
    """Wrap transaction set bodies in ST/SE, one GS/GE group and ISA/IEA."""
    segments = [
        ISA.format(control=control),
        "GS*%s*SENDER*RECEIVER*20240329*1200*%s*X*005010" % (functional_code, group_control),
    ]
    for number, (code, body) in enumerate(transaction_sets, start=1):
        control_number = "%04d" % number
        segments.append("ST*%s*%s" % (code, control_number))
        segments.extend(body)
        segments.append("SE*%d*%s" % (len(body) + 2, control_number))
    segments.append("GE*%d*%s" % (len(transaction_sets) if group_count is None else group_count, group_control))
    segments.append("IEA*1*%s" % (trailer_control or control))
    return "~\n".join(segments) + "~\n"


def remit_body(
    claims: Sequence[RemitClaim],
    payment_ref: str = "EFT12345",
    payment_date: str = "20240329",
    payer: str = "ACME HEALTH",
    amount: Optional[str] = None,
    provider_adjustments: Sequence[Tuple[str, str]] = (),
) -> List[str]:
    """
    Segments of one 835 transaction set.

    ``amount`` defaults to the paid lines plus the provider adjustments
    (whose PLB amounts are subtracted, as in a real remittance).
    """
    if amount is None:
        paid = money_sum(line[2] for claim in claims for line in claim[3])
        amount = str(money_add(paid, -money_sum(raw for _, raw in provider_adjustments)))

    body = [
        "BPR*I*%s*C*ACH*CCP*01*999999999*DA*123456*1512345678**01*999988880*DA*98765*%s" % (amount, payment_date),
        "TRN*1*%s*1512345678" % payment_ref,
        "DTM*405*%s" % payment_date,
        "N1*PR*%s" % payer,
        "N1*PE*GOOD THERAPY*XX*1234567890",
        "LX*1",
    ]
    for claim_id, last_name, first_name, lines in claims:
        billed = money_sum(line[1] for line in lines)
        paid = money_sum(line[2] for line in lines)
        coinsurance = money_sum(line[5] for line in lines)
        body.append("CLP*%s*1*%s*%s*%s*MC*PAYERCLAIM*11" % (claim_id, billed, paid, coinsurance))
        body.append("NM1*QC*1*%s*%s****MI*XYZ123" % (last_name, first_name))
        for code, line_billed, line_paid, service_date, contractual, line_coinsurance in lines:
            body.append("SVC*HC:%s*%s*%s**1" % (code, line_billed, line_paid))
            body.append("DTM*472*%s" % service_date)
            if Decimal(contractual):
                body.append("CAS*CO*45*%s" % contractual)
            if Decimal(line_coinsurance):
                body.append("CAS*PR*2*%s" % line_coinsurance)
    if provider_adjustments:
        plb = "PLB*1234567890*20241231"
        for reason, raw in provider_adjustments:
            plb += "*%s:PAYERREF*%s" % (reason, raw)
        body.append(plb)
    return body


def remit_835(claims: Sequence[RemitClaim], **kwargs) -> str:
    return interchange("HP", [("835", remit_body(claims, **kwargs))])


def jane_doe_remit(payment_ref: str = "EFT12345", paid: str = "100.00", coinsurance: str = "0.00", **kwargs) -> str:
    """Payment of the two charges billed as IN00004521."""
    contractual = "50.00"
    lines = [
        ("90837", "150.00", paid, "20240304", contractual, coinsurance),
        ("90837", "150.00", paid, "20240311", contractual, coinsurance),
    ]
    return remit_835([("IN00004521", "DOE", "JANE", lines)], payment_ref=payment_ref, **kwargs)


def claim_body(claims: Sequence[ClaimData], billed_date: str = "20240320", payer_id: str = "PAYER001") -> List[str]:
    """Segments of one 837 professional transaction set."""
    body = [
        "BHT*0019*00*0123*%s*1200*CH" % billed_date,
        "NM1*41*2*GOOD THERAPY*****46*TGJ23",
        "NM1*40*2*ACME HEALTH*****46*66783JJT",
        "HL*1**20*1",
        "NM1*85*2*GOOD THERAPY*****XX*1234567890",
    ]
    for number, (claim_id, last_name, first_name, lines) in enumerate(claims, start=2):
        billed = money_sum(line[1] for line in lines)
        body.extend(
            [
                "HL*%d*1*22*0" % number,
                "SBR*P*18*******CI",
                "NM1*IL*1*%s*%s****MI*XYZ123" % (last_name, first_name),
                "NM1*PR*2*ACME HEALTH*****PI*%s" % payer_id,
                "CLM*%s*%s***11:B:1*Y*A*Y*Y" % (claim_id, billed),
            ]
        )
        for index, (code, line_billed, units, service_date) in enumerate(lines, start=1):
            body.extend(
                [
                    "LX*%d" % index,
                    "SV1*HC:%s*%s*UN*%d***1" % (code, line_billed, units),
                    "DTP*472*D8*%s" % service_date,
                ]
            )
    return body


def claim_837(claims: Sequence[ClaimData], **kwargs) -> str:
    return interchange("HC", [("837", claim_body(claims, **kwargs))])


def jane_doe_claim(**kwargs) -> str:
    """The 837 that billed charges 4521 and 4522."""
    lines = [("90837", "150.00", 1, "20240304"), ("90837", "150.00", 1, "20240311")]
    return claim_837([("4521", "DOE", "JANE", lines)], **kwargs)
