from db import col

def ensure_indexes():
    # users
    col("users").create_index("email", unique=True)
    col("users").create_index([("role",1), ("status",1)])

    # trainings (embedded attendees are a cache of training_registrations)
    t = col("trainings")
    t.create_index("startDate")
    t.create_index("status")
    t.create_index("attendees.userId")

    # training_registrations: one row per (training, user)
    r = col("training_registrations")
    r.create_index([("trainingId",1), ("userId",1)], unique=True)
    r.create_index("trainingId")
    r.create_index("userId")
    r.create_index("status")
