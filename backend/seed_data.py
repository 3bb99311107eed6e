"""Seed database with demo data."""
from datetime import datetime, timedelta, timezone

from precast_erp.database import Base, SessionLocal, engine
from precast_erp.models import (
    Client, Element, ElementType, EndClient, Precast, PrecastStock,
    Project, ProjectMember, Stockyard, User, UserSession, VehicleDetails,
)
from precast_erp.services.dimensions import compute_weight


def seed():
    """Seed database with demo data."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        # Users, one per role
        users_data = [
            {'first_name': 'Asha', 'last_name': 'Rao', 'email': 'admin@precast.local', 'role': 'admin'},
            {'first_name': 'Vikram', 'last_name': 'Shah', 'email': 'pm@precast.local', 'role': 'project_manager'},
            {'first_name': 'Meera', 'last_name': 'Iyer', 'email': 'yard@precast.local', 'role': 'stockyard_manager'},
            {'first_name': 'Ravi', 'last_name': 'Kumar', 'email': 'dispatch@precast.local', 'role': 'dispatcher'},
            {'first_name': 'Nisha', 'last_name': 'Patel', 'email': 'site@precast.local', 'role': 'site_engineer'},
            {'first_name': 'Client', 'last_name': 'Owner', 'email': 'client@precast.local', 'role': 'admin'},
        ]
        users = [User(**user_data) for user_data in users_data]
        db.add_all(users)
        db.flush()

        client = Client(user_id=users[-1].id, name="Skyline Developers")
        db.add(client)
        db.flush()
        end_client = EndClient(client_id=client.client_id, name="Skyline Residency", abbreviation="SKY")
        db.add(end_client)
        db.flush()

        project = Project(name="Skyline Tower A", abbreviation="STA", client_id=end_client.id)
        db.add(project)
        db.flush()
        for user in users[:5]:
            db.add(ProjectMember(project_id=project.project_id, user_id=user.id))

        # Tower -> floors
        tower = Precast(project_id=project.project_id, name="Tower A", prefix="TA")
        db.add(tower)
        db.flush()
        floors = [
            Precast(project_id=project.project_id, name=f"Floor {number}", parent_id=tower.id, prefix=f"F{number}")
            for number in range(1, 4)
        ]
        db.add_all(floors)

        stockyard = Stockyard(project_id=project.project_id, yard_name="North Yard", location="Plant 1")
        db.add(stockyard)

        element_type = ElementType(
            project_id=project.project_id,
            element_type="WALL",
            element_type_name="Wall Panel 200",
            thickness=200.0,
            length=3000.0,
            height=2800.0,
            density=2500.0,
        )
        db.add(element_type)
        db.flush()

        produced_at = datetime.now(timezone.utc) - timedelta(days=3)
        weight = compute_weight(
            thickness=element_type.thickness,
            length=element_type.length,
            height=element_type.height,
            density=element_type.density,
        )
        for index in range(6):
            floor = floors[index % len(floors)]
            element = Element(
                project_id=project.project_id,
                element_type_id=element_type.element_type_id,
                element_name=f"WALL-{index + 1:03d}",
                target_location=floor.id,
                status="In Stockyard" if index < 4 else "In Production",
            )
            db.add(element)
            db.flush()
            db.add(
                PrecastStock(
                    element_id=element.id,
                    project_id=project.project_id,
                    element_type=element_type.element_type,
                    element_type_id=element_type.element_type_id,
                    stockyard_id=stockyard.id,
                    thickness=element_type.thickness,
                    length=element_type.length,
                    height=element_type.height,
                    weight=weight,
                    target_location=floor.id,
                    lifecycle_state="InStockyard" if index < 4 else "Produced",
                    production_date=produced_at,
                )
            )

        db.add(
            VehicleDetails(
                vehicle_number="MH-12-AB-1234",
                driver_name="Asha",
                driver_contact_no="9800000000",
                capacity="20t",
                transporter_id=1,
                truck_type="trailer",
            )
        )

        expires_at = datetime.now(timezone.utc) + timedelta(days=30)
        for user in users:
            db.add(
                UserSession(
                    session_id=f"demo-{user.role}-{user.id}",
                    user_id=user.id,
                    host_name="localhost",
                    ip_address="127.0.0.1",
                    expires_at=expires_at,
                )
            )

        db.commit()
        print("Database seeded successfully!")
        print("\nDemo sessions (send as Authorization header):")
        for user in users:
            print(f"  demo-{user.role}-{user.id} ({user.email})")

    except Exception as e:
        db.rollback()
        print(f"Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
