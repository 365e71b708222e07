# crm/seed.py
import logging
from datetime import timedelta
from typing import Any, Dict, List

from sqlmodel import Session, select

from crm.models import Lead, Prospect, User, utcnow
from crm.security import hash_password
from crm.services.automation import initialize_default_rules
from crm.services.scoring import score_prospect

log = logging.getLogger(__name__)

DEMO_PASSWORD = "demo123"

DEMO_USERS: List[Dict[str, Any]] = [
    {"username": "admin", "name": "Marie Dubois", "email": "marie@redweyne.fr", "role": "admin"},
    {"username": "agent1", "name": "Pierre Martin", "email": "pierre@redweyne.fr", "role": "agent"},
    {"username": "agent2", "name": "Sophie Laurent", "email": "sophie@redweyne.fr", "role": "agent"},
    {"username": "operator", "name": "Lucas Petit", "email": "lucas@redweyne.fr", "role": "operator"},
]

# next_action / last_contact given as day offsets from now
DEMO_PROSPECTS: List[Dict[str, Any]] = [
    {
        "full_name": "Jean Dupont", "phone": "+33612345678", "email": "jean.dupont@email.fr",
        "prospect_type": "Vendeur", "city": "Paris 15ème", "property_type": "Appartement",
        "estimated_price": 450000, "fee_rate": 0.04, "exclusive": True,
        "motivation": "Déménagement professionnel", "timeline": "< 3 mois", "intention": "Vente rapide",
        "source": "Site web", "consent": True, "status": "Qualifié",
        "address": "12 rue de la Convention, 75015 Paris",
        "notes": "Client motivé, bien situé, exclusivité signée",
        "next_in": 1, "contact_ago": 2,
    },
    {
        "full_name": "Marie Leroy", "phone": "+33698765432", "email": "marie.leroy@email.fr",
        "prospect_type": "Acheteur", "city": "Neuilly-sur-Seine", "property_type": "Maison",
        "budget": 800000, "fee_rate": 0.03, "motivation": "Agrandissement familial",
        "timeline": "6 mois", "intention": "Recherche active", "source": "Recommandation",
        "consent": True, "status": "RDV fixé", "notes": "Famille avec 2 enfants, recherche jardin",
        "next_in": 3, "contact_ago": 1,
    },
    {
        "full_name": "Thomas Bernard", "phone": "+33645678912", "email": "thomas.bernard@email.fr",
        "prospect_type": "Vendeur", "city": "Boulogne-Billancourt", "property_type": "Studio",
        "estimated_price": 280000, "fee_rate": 0.05, "motivation": "Investissement locatif",
        "timeline": "< 1 mois", "intention": "Vente urgente", "source": "Facebook Ads",
        "consent": True, "status": "Mandat signé",
        "address": "8 avenue du Général Leclerc, 92100 Boulogne",
        "notes": "Investisseur, plusieurs biens, urgent",
        "next_in": 0, "contact_ago": 0,
    },
    {
        "full_name": "Claire Moreau", "phone": "+33611223344", "email": "claire.moreau@email.fr",
        "prospect_type": "Acheteur", "city": "Vincennes", "property_type": "Appartement",
        "budget": 550000, "fee_rate": 0.03, "exclusive": True, "motivation": "Premier achat",
        "timeline": "3 mois", "intention": "Recherche méthodique", "source": "Le Bon Coin",
        "consent": True, "status": "Contacté", "notes": "Primo-accédante, dossier solide, patient",
        "next_in": 2, "contact_ago": 5,
    },
]

DEMO_LEADS: List[Dict[str, Any]] = [
    {"full_name": "Nicolas Fabre", "phone": "+33622334455", "city": "Lyon", "prospect_type": "Vendeur",
     "estimated_price": 320000, "source": "facebook", "consent": True, "is_hot_lead": True, "cost": 18},
    {"full_name": "Julie Garnier", "phone": "+33633445566", "city": "Lille", "prospect_type": "Vendeur",
     "estimated_price": 210000, "source": "google", "consent": True, "cost": 22},
    {"full_name": "Antoine Roux", "phone": "+33644556677", "city": "Nantes", "prospect_type": "Vendeur",
     "estimated_price": 260000, "source": "referral", "consent": False, "cost": 0},
]


def seed_defaults(session: Session) -> None:
    created = initialize_default_rules(session)
    if created:
        log.info("Created %s default automation rules", created)


def seed_demo_data(session: Session) -> bool:
    """Demo users, prospects and leads. Skipped when an admin user already exists."""
    if session.exec(select(User).where(User.username == "admin")).first():
        log.info("Demo data already exists, skipping initialization")
        return False

    now = utcnow()
    users = []
    for data in DEMO_USERS:
        user = User(password_hash=hash_password(DEMO_PASSWORD), **data)
        session.add(user)
        users.append(user)
    session.flush()

    agents = [u for u in users if u.role == "agent"]
    operator = next(u for u in users if u.role == "operator")

    for i, data in enumerate(DEMO_PROSPECTS):
        data = dict(data)
        next_in = data.pop("next_in")
        contact_ago = data.pop("contact_ago")
        p = Prospect(
            agent_id=agents[i % len(agents)].id,
            next_action=now + timedelta(days=next_in, hours=1),
            last_contact=now - timedelta(days=contact_ago, hours=3),
            created_at=now - timedelta(days=contact_ago + 1),
            **data,
        )
        p.score = score_prospect(p)
        session.add(p)

    for data in DEMO_LEADS:
        session.add(Lead(owner_user_id=operator.id, **data))

    session.commit()
    log.info(
        "Demo data initialized: %s users, %s prospects, %s leads (password %s)",
        len(users), len(DEMO_PROSPECTS), len(DEMO_LEADS), DEMO_PASSWORD,
    )
    return True
