# Panchayat Community Portal: Seed Data Importer
# Resets MongoDB and populates demo accounts and notices
#
# Usage:  python -m panchayat.importer

from pymongo import MongoClient

from .config import MONGODB_DB, MONGODB_URL, now_utc
from .seed.notices import import_notices
from .seed.users import USERS, import_users


def prepare_indexes(db) -> None:
    db.users.create_index("email", unique=True)
    db.chats.create_index([("user_id", 1), ("updated_at", -1)])


def run(db) -> dict:
    print("\n[2/4] Resetting collections...")
    for coll in ["users", "chats", "mirror"]:
        db[coll].drop()
    print("  MongoDB: users, chats, mirror")

    print("\n[3/4] Users")
    user_ids = import_users(db)
    prepare_indexes(db)

    print("\n[4/4] Notices")
    admin_id = user_ids[next(u["email"] for u in USERS if u["role"] == "admin")]
    n_notices = import_notices(db, admin_id)
    db.mirror.replace_one(
        {"_id": "feedback"},
        {"_id": "feedback", "items": [], "updated_at": now_utc(), "updated_by": admin_id},
        upsert=True,
    )
    return {"users": len(user_ids), "notices": n_notices}


def main():
    print("=" * 64)
    print("  Panchayat Community Portal: Data Importer")
    print("=" * 64)

    print("\n[1/4] Connecting to MongoDB...")
    mongo_client = MongoClient(MONGODB_URL)
    db = mongo_client[MONGODB_DB]
    print(f"  Connected: {MONGODB_URL} ({MONGODB_DB})")

    counts = run(db)

    print("\n" + "=" * 64)
    print("  IMPORT COMPLETE")
    print("=" * 64)
    print(f"  Users:    {counts['users']}")
    print(f"  Notices:  {counts['notices']}")
    print()
    print("  Test credentials:")
    for u in USERS:
        print(f"    {u['email']:32s} / {u['password']:10s} ({u['role']})")
    mongo_client.close()


if __name__ == "__main__":
    main()
