# Seed data: demo notices for the remote mirror

import json
from datetime import timedelta

from ..config import now_utc
from ..models import Notice, NoticeCategory, Priority
from ..notices import render_qr_data_uri

# ---------------------------------------------------------------------------
# Raw notice definitions
# ---------------------------------------------------------------------------
NOTICES = [
    {"title": "Gram Sabha meeting on Sunday",
     "content": "All residents are invited to the Gram Sabha at the Panchayat Bhawan "
                "on Sunday at 10 AM. The agenda covers the annual development plan.",
     "category": NoticeCategory.PUBLIC, "priority": Priority.MEDIUM, "valid_days": 7},

    {"title": "Heavy rain alert",
     "content": "The district administration has issued a heavy rain warning for the next "
                "48 hours. Avoid low-lying areas and keep livestock sheltered.",
     "category": NoticeCategory.EMERGENCY, "priority": Priority.URGENT,
     "is_emergency": True, "valid_days": 2},

    {"title": "Free health camp at the PHC",
     "content": "A free eye and blood pressure check-up camp will be held at the Primary "
                "Health Centre on Wednesday from 9 AM to 4 PM.",
     "category": NoticeCategory.HEALTH, "priority": Priority.HIGH, "valid_days": 5},

    {"title": "पीएम-किसान ई-केवाईसी शिविर",
     "content": "पीएम-किसान योजना के लाभार्थी अपना ई-केवाईसी पंचायत भवन में शुक्रवार तक "
                "पूरा करवा लें। आधार कार्ड और बैंक पासबुक साथ लाएं।",
     "category": NoticeCategory.SCHEMES, "priority": Priority.HIGH,
     "language": "hi-IN", "valid_days": 10},

    {"title": "MGNREGA job card renewal",
     "content": "Job card holders can renew their cards at the Panchayat office. "
                "Work under the new pond project starts next month.",
     "category": NoticeCategory.EMPLOYMENT, "priority": Priority.LOW, "valid_days": 30},
]

# ---------------------------------------------------------------------------
# Import function
# ---------------------------------------------------------------------------
def build_notices() -> list[Notice]:
    notices = []
    now = now_utc()
    for n in NOTICES:
        language = n.get("language", "en-US")
        payload = json.dumps({"title": n["title"], "content": n["content"], "language": language},
                             ensure_ascii=False)
        notices.append(Notice(
            title=n["title"], content=n["content"], category=n["category"],
            priority=n["priority"], language=language, created_at=now,
            valid_until=now + timedelta(days=n["valid_days"]),
            is_emergency=n.get("is_emergency", False),
            tags=[n["category"].value, n["priority"].value],
            qr_code_url=render_qr_data_uri(payload),
        ))
    return notices


def import_notices(db, admin_id: str) -> int:
    """Replace the notice mirror with the demo notices."""
    print("\n  Importing demo notices...")
    notices = build_notices()
    db.mirror.replace_one(
        {"_id": "notices"},
        {"_id": "notices", "items": [n.model_dump(mode="json") for n in notices],
         "updated_at": now_utc(), "updated_by": admin_id},
        upsert=True,
    )
    for n in notices:
        print(f"    [{n.category.value:10s}] {n.title}")
    print(f"  => {len(notices)} notices seeded")
    return len(notices)
