# Seed data: portal accounts (one admin who posts notices, one resident viewer)

from passlib.context import CryptContext

from ..config import new_id, now_utc

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# ---------------------------------------------------------------------------
# Raw user definitions
# ---------------------------------------------------------------------------
USERS = [
    {"name": "Panchayat Secretary", "email": "admin@panchayat.local",
     "password": "admin123", "role": "admin", "language": "en"},

    {"name": "Sunita Devi", "email": "sunita.devi@panchayat.local",
     "password": "viewer123", "role": "viewer", "language": "hi"},
]

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
def import_users(db) -> dict[str, str]:
    """Insert seed users into MongoDB. Returns {email: _id} mapping."""
    print("\n  Importing seed users...")
    user_ids: dict[str, str] = {}
    for u in USERS:
        uid = new_id()
        db.users.insert_one({
            "_id": uid,
            "name": u["name"],
            "email": u["email"],
            "hashed_password": pwd_context.hash(u["password"]),
            "role": u["role"],
            "language": u["language"],
            "created_at": now_utc(),
        })
        user_ids[u["email"]] = uid
        print(f"    {u['email']:32s}  ({u['role']})")
    print(f"  => {len(USERS)} users created")
    return user_ids
