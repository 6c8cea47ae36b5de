# app/db/data/prizes.py

DEMO_CLASSROOM_ID = "demo-classroom"

# バザーの賞品テンプレート（ミステリーボックスの排出対象）
DEMO_PRIZES = [
    {
        "key": "sticker",
        "name": "Gold Star Sticker",
        "category": "Cosmetic",
        "price": 5,
        "description": "A shiny sticker for your profile.",
    },
    {
        "key": "homework_pass",
        "name": "Homework Pass",
        "category": "Utility",
        "price": 40,
        "description": "Skip one homework assignment.",
    },
    {
        "key": "seat_swap",
        "name": "Seat Swap",
        "category": "Utility",
        "price": 60,
        "description": "Pick your seat for a day.",
    },
    {
        "key": "double_xp",
        "name": "Double XP Potion",
        "category": "Passive",
        "price": 120,
        "description": "Doubles XP earned for one challenge.",
    },
    {
        "key": "golden_ticket",
        "name": "Golden Ticket",
        "category": "Passive",
        "price": 300,
        "description": "Redeem for any item in the bazaar.",
    },
]

# 排出テーブル: key, rarity, base_chance（合計100%）
DEMO_POOL = [
    ("sticker", "common", 40),
    ("homework_pass", "uncommon", 30),
    ("seat_swap", "rare", 20),
    ("double_xp", "epic", 8),
    ("golden_ticket", "legendary", 2),
]

DEMO_USERS = [
    {"firebase_uid": "uid_teacher", "username": "Ms. Tanaka", "role": "teacher", "luck": 1.0},
    {"firebase_uid": "uid_student_a", "username": "Student A", "role": "student", "luck": 1.0, "balance": 500},
    {"firebase_uid": "uid_student_b", "username": "Student B", "role": "student", "luck": 3.0, "balance": 500},
]
