import pytest

from crm.services.scoring import contact_block, expected_value, is_ready_to_sell, score_prospect


def test_score_baseline_is_50():
    assert score_prospect({}) == 50


def test_score_adds_each_signal():
    p = {
        "prospect_type": "Vendeur",          # +10
        "timeline": "< 3 mois",              # +10
        "motivation": "Mutation professionnelle à Lyon",  # +5
        "consent": True,                     # +5
        "status": "RDV fixé",                # +8
        "budget": 350000,                    # +3
    }
    assert score_prospect(p) == 91


@pytest.mark.parametrize("status,delta", [
    ("Mandat signé", 15),
    ("Gagné", 10),
    ("Perdu", -15),
    ("Pas de réponse", -15),
    ("Qualifié", 0),
])
def test_score_status_deltas(status, delta):
    assert score_prospect({"status": status}) == 50 + delta


def test_score_budget_bonus_capped_at_10():
    assert score_prospect({"budget": 5_000_000}) == 60


def test_score_clamped_to_100():
    p = {
        "prospect_type": "Vendeur",
        "timeline": "<1 mois",
        "motivation": "x" * 40,
        "consent": True,
        "status": "Mandat signé",
        "budget": 2_000_000,
    }
    assert score_prospect(p) == 100


def test_score_handles_missing_and_null_fields():
    assert score_prospect({"budget": None, "motivation": None, "timeline": None}) == 50


def test_expected_value_qualified():
    p = {"estimated_price": 320000, "fee_rate": 0.04, "status": "Qualifié", "exclusive": False}
    assert expected_value(p) == pytest.approx(3200.0)


def test_expected_value_exclusive_bonus():
    p = {"estimated_price": 320000, "fee_rate": 0.04, "status": "Qualifié", "exclusive": True}
    assert expected_value(p) == pytest.approx(3520.0)


def test_expected_value_lost_and_unknown_status_are_zero():
    assert expected_value({"estimated_price": 500000, "fee_rate": 0.05, "status": "Perdu"}) == 0
    assert expected_value({"estimated_price": 500000, "fee_rate": 0.05, "status": "???"}) == 0


def test_contact_block_reasons():
    assert contact_block({"bad_number": True}) == (True, "Bad number")
    assert contact_block({"do_not_contact": True}) == (True, "Do not contact")
    assert contact_block({}) == (False, None)


def test_ready_to_sell_needs_every_criterion():
    lead = {
        "phone": "+33612345678",
        "consent": True,
        "intention": "Vendre",
        "timeline": "< 3 mois",
        "estimated_price": 300000,
        "city": "Lyon",
    }
    assert is_ready_to_sell(lead) is False  # no live touch yet
    assert is_ready_to_sell(lead, has_live_touch=True) is True
    assert is_ready_to_sell({**lead, "bad_number": True}, has_live_touch=True) is False
    assert is_ready_to_sell({**lead, "city": None}, has_live_touch=True) is False
