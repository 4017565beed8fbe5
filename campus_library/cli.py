"""Small maintenance utilities, meant to be run by hand or from cron.

    python -m campus_library.cli --initdb
    python -m campus_library.cli --seed
    python -m campus_library.cli --sweep     # daily overdue / claim-expiry pass
"""

import argparse
import logging

from campus_library.core.config import configure_logging
from campus_library.core.database import Base, SessionLocal, engine
from campus_library.models import models
from campus_library.models.enums import BookTag, UserType
from campus_library.services.loans import sweep_overdue
from campus_library.services.notifications import dispatcher

logger = logging.getLogger(__name__)


def seed(db):
    # idempotent
    if db.query(models.User).count() == 0:
        db.add_all([
            models.User(name='Alice', email='alice@example.com', user_type=UserType.STUDENT),
            models.User(name='Bob', email='bob@example.com', user_type=UserType.TEACHER),
        ])
    if db.query(models.Book).count() == 0:
        db.add_all([
            models.Book(title='Data Engineering with Python', author='J. Reader', isbn='978-1111111111',
                        category='Computing', tag=BookTag.YELLOW, copies_total=3, copies_available=3),
            models.Book(title='Designing Data-Intensive Applications', author='Martin Kleppmann',
                        isbn='978-0980000000', category='Computing', tag=BookTag.WHITE,
                        copies_total=2, copies_available=2),
            models.Book(title='Handbook of Chemistry and Physics', author='CRC', isbn='978-0000000001',
                        category='Reference', tag=BookTag.RED, copies_total=1, copies_available=1),
        ])
    db.commit()
    logger.info('Seeded sample data')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Campus library utilities')
    parser.add_argument('--initdb', action='store_true', help='Create tables')
    parser.add_argument('--seed', action='store_true', help='Seed sample data')
    parser.add_argument('--sweep', action='store_true', help='Mark overdue loans and expire stale claims')
    args = parser.parse_args(argv)
    configure_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if args.seed:
            seed(db)
        if args.sweep:
            summary = sweep_overdue(db, dispatcher)
            print(summary)
    finally:
        db.close()
    print('Done')


if __name__ == '__main__':
    main()
