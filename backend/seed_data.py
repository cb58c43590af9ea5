# backend/seed_data.py
from database.connection import SessionLocal, engine, Base
from database.models import *
from api.auth import hash_password
from api.settings import SETTING_DEFAULTS
import os

db = SessionLocal()

ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@mediqueue.in")
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "admin123")
STAFF_PASSWORD = os.getenv("SEED_STAFF_PASSWORD", "staff123")

SETTING_DESCRIPTIONS = {
    "maintenance_mode": "Close the patient-facing site",
    "maintenance_message": "Shown while maintenance mode is on",
    "auto_refresh_interval": "Queue screen poll interval (seconds)",
    "enable_online_payments": "Offer the pay-now option at booking",
    "max_tokens_per_department": "Daily token cap per department",
    "clinic_name": "Name shown on screens and tokens",
}


def seed_data():
    print("Starting database seeding...")

    try:
        Base.metadata.create_all(bind=engine)

        # Check if data already exists
        existing_departments = db.query(Department).count()
        if existing_departments > 0:
            print(f"Database already has {existing_departments} departments. Skipping seeding.")
            response = input("Do you want to clear and re-seed? (yes/no): ")
            if response.lower() != 'yes':
                return

            # Clear all data
            print("Clearing existing data...")
            db.query(AuditLog).delete()
            db.query(MedicalHistory).delete()
            db.query(Consultation).delete()
            db.query(DoctorSession).delete()
            db.query(PaymentTransaction).delete()
            db.query(Visit).delete()
            db.query(Patient).delete()
            db.query(StaffUser).delete()
            db.query(Doctor).delete()
            db.query(Department).delete()
            db.query(ClinicSetting).delete()
            db.commit()
            print("All existing data cleared!")

        # ==================== DEPARTMENTS ====================
        print("\nCreating departments...")

        departments_data = [
            {"name": "general", "display_name": "General Medicine", "consultation_fee": 300,
             "average_consultation_time": 10, "color_code": "#3B82F6"},
            {"name": "pediatrics", "display_name": "Pediatrics", "consultation_fee": 400,
             "average_consultation_time": 15, "color_code": "#10B981"},
            {"name": "cardiology", "display_name": "Cardiology", "consultation_fee": 800,
             "average_consultation_time": 20, "color_code": "#EF4444"},
            {"name": "orthopedics", "display_name": "Orthopedics", "consultation_fee": 600,
             "average_consultation_time": 15, "color_code": "#F59E0B"},
            {"name": "dermatology", "display_name": "Dermatology", "consultation_fee": 500,
             "average_consultation_time": 12, "color_code": "#8B5CF6"},
        ]

        for dept_data in departments_data:
            db.add(Department(**dept_data))

        db.commit()
        print(f"Created {len(departments_data)} departments")

        # ==================== DOCTORS ====================
        print("\nCreating doctors...")

        weekdays = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]
        doctors_data = [
            {"name": "Dr. Amit Desai", "specialization": "general", "email": "amit.desai@mediqueue.in",
             "phone": "+919800000001", "max_patients_per_day": 60},
            {"name": "Dr. Kavya Iyer", "specialization": "pediatrics", "email": "kavya.iyer@mediqueue.in",
             "phone": "+919800000002", "max_patients_per_day": 40},
            {"name": "Dr. Meera Reddy", "specialization": "cardiology", "email": "meera.reddy@mediqueue.in",
             "phone": "+919800000003", "max_patients_per_day": 25},
            {"name": "Dr. Rajesh Sharma", "specialization": "orthopedics", "email": "rajesh.sharma@mediqueue.in",
             "phone": "+919800000004", "max_patients_per_day": 30},
            {"name": "Dr. Sana Qureshi", "specialization": "dermatology", "email": "sana.qureshi@mediqueue.in",
             "phone": "+919800000005", "max_patients_per_day": 35},
        ]

        created_doctors = []
        for doc_data in doctors_data:
            doctor = Doctor(
                status=DoctorStatus.ACTIVE.value,
                available_days=weekdays,
                available_hours={"start": "09:00", "end": "17:00"},
                **doc_data
            )
            db.add(doctor)
            db.flush()
            created_doctors.append(doctor)

        db.commit()
        print(f"Created {len(doctors_data)} doctors")

        # ==================== SETTINGS ====================
        print("\nCreating clinic settings...")

        for key, value in SETTING_DEFAULTS.items():
            db.add(ClinicSetting(
                setting_key=key,
                setting_value=value,
                description=SETTING_DESCRIPTIONS.get(key)
            ))

        db.commit()
        print(f"Created {len(SETTING_DEFAULTS)} settings")

        # ==================== STAFF ACCOUNTS ====================
        print("\nCreating staff accounts...")

        staff_accounts = [
            StaffUser(email=ADMIN_EMAIL, full_name="Clinic Admin",
                      password_hash=hash_password(ADMIN_PASSWORD), role=StaffRole.ADMIN.value),
            StaffUser(email="reception@mediqueue.in", full_name="Front Desk",
                      password_hash=hash_password(STAFF_PASSWORD), role=StaffRole.STAFF.value),
        ]
        for doctor in created_doctors:
            staff_accounts.append(StaffUser(
                email=doctor.email,
                full_name=doctor.name,
                password_hash=hash_password(STAFF_PASSWORD),
                role=StaffRole.DOCTOR.value,
                doctor_id=doctor.id
            ))

        db.add_all(staff_accounts)
        db.commit()
        print(f"Created {len(staff_accounts)} staff accounts")

        print("\n" + "="*50)
        print("Database seeding completed successfully!")
        print("="*50)
        print("\nSummary:")
        print(f"   Departments: {len(departments_data)}")
        print(f"   Doctors: {len(doctors_data)}")
        print(f"   Settings: {len(SETTING_DEFAULTS)}")
        print(f"   Staff accounts: {len(staff_accounts)}")
        print(f"\n   Admin login: {ADMIN_EMAIL}")

    except Exception as e:
        print(f"\nError during seeding: {e}")
        db.rollback()
        import traceback
        traceback.print_exc()
    finally:
        db.close()

if __name__ == "__main__":
    seed_data()
