#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[mcp] host={os.environ.get('CLUEPRINT_HOST', '127.0.0.1')} | "
    f"port={os.environ.get('CLUEPRINT_PORT', '7007')} | "
    f"state_dir={os.environ.get('CLUEPRINT_STATE_DIR', 'auto')}",
    file=sys.stderr,
)

from mcp_servers.clueprint.main import main  # noqa: E402

if __name__ == "__main__":
    main()
