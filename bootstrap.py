import logging

from lingowow.config import settings
from lingowow.core.time_provider import default_time_provider
from lingowow.db import Base, SessionLocal, engine
from lingowow.models import Role, User
from lingowow.services.academic_period_service import persist_generated_periods
from lingowow.services.auth_service import hash_password


logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s %(message)s')
logger = logging.getLogger('bootstrap')


def ensure_admin(db) -> bool:
    email = settings.bootstrap_admin_email.strip().lower()
    if not email or not settings.bootstrap_admin_password:
        return False
    if db.query(User).filter(User.email == email).first():
        return False
    db.add(User(email=email, name='Admin', role=Role.ADMIN.value, password_hash=hash_password(settings.bootstrap_admin_password)))
    db.commit()
    return True


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        year = default_time_provider.today().year
        created = persist_generated_periods(db, year)
        admin_created = ensure_admin(db)
        logger.info('Bootstrap executed: year=%s periods_created=%s admin_created=%s', year, len(created), admin_created)
    finally:
        db.close()


if __name__ == '__main__':
    main()
