from __future__ import annotations

from circuit_agent.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
