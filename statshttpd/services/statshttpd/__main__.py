"""Module entrypoint so the daemon also runs as ``python -m statshttpd.services.statshttpd``."""

from statshttpd.services.statshttpd.main import main

if __name__ == "__main__":
    raise SystemExit(main())
