# scripts/init_db.py
# Run once during the deploy build to create the database tables ahead of the
# first request, in a single process.

from app.main import init_db


def main():
    init_db()


if __name__ == "__main__":
    main()
