from sqlalchemy import func, select

from township_server.db import asset, init_db, report_submission, session_scope
from township_server.storage import build_store


def main() -> None:
    init_db()
    store = build_store()
    with session_scope() as session:
        submissions = session.execute(select(func.count()).select_from(report_submission)).scalar_one()
        assets = session.execute(select(func.count()).select_from(asset)).scalar_one()
    print(f"store={type(store).__name__} submissions={submissions} assets={assets}")


if __name__ == "__main__":
    main()
