import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from colorama import Fore, Style, init

init(autoreset=True)

_COLORS = {
    "Controller": Fore.CYAN,
    "Transport": Fore.BLUE,
    "Gateway": Fore.GREEN,
    "Analyst": Fore.MAGENTA,
    "Repair": Fore.YELLOW,
    "Relay": Fore.GREEN,
    "Storage": Fore.WHITE,
    "System": Fore.WHITE,
}

_PREFIXES = {
    "Controller": "[LOG :: CONTROLLER]",
    "Transport": "[LOG :: TRANSPORT]",
    "Gateway": "[LOG :: GATEWAY]",
    "Analyst": "[LOG :: ANALYST]",
    "Repair": "[LOG :: REPAIR]",
    "Relay": "[LOG :: RELAY]",
    "Storage": "[LOG :: STORAGE]",
    "System": "[LOG :: SYSTEM]",
}


class EventLog:
    """Coloured console trail plus a JSON record of what happened in one run.

    Every ``log`` call is mirrored to the ``intervuo.events`` logger and kept in
    ``log_data["events"]``; when ``log_dir`` is set the record is rewritten to
    ``<log_dir>/<name>_<session_id>_<timestamp>.json`` after each event.
    """

    def __init__(self, name: str = "intervuo", log_dir: str | Path | None = None):
        self.name = name
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_file: Path | None = None
        self.log_data: Dict[str, Any] = {}
        self.reset()
        self._setup_logger()

    def _setup_logger(self):
        logger = logging.getLogger("intervuo.events")
        logger.setLevel(logging.INFO)
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter('%(message)s'))
            logger.addHandler(handler)
            logger.propagate = False
        self.logger = logger

    def log(self, component: str, message: str, data: Dict[str, Any] | None = None):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "component": component,
            "message": message,
            "data": data or {}
        }
        self.log_data["events"].append(entry)

        color = _COLORS.get(component, Fore.WHITE)
        prefix = _PREFIXES.get(component, f"[LOG :: {component.upper()}]")
        formatted_msg = f"{color}{prefix}{Style.RESET_ALL} {message}"
        if data:
            formatted_msg += f" | Data: {json.dumps(data, ensure_ascii=False, default=str)}"

        self.logger.info(formatted_msg)
        self._save_log()

    def log_state_transition(self, from_state: str, to_state: str, reason: str = ""):
        self.log_data["transitions"].append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "from": from_state,
            "to": to_state,
            "reason": reason
        })
        self.log("Controller", f"State transition: {from_state} → {to_state}", {"reason": reason})

    def log_tokens(self, prompt_tokens: int, completion_tokens: int):
        metrics = self.log_data["metrics"]
        metrics["prompt_tokens"] += prompt_tokens
        metrics["completion_tokens"] += completion_tokens
        metrics["total_tokens"] += prompt_tokens + completion_tokens
        self.log("System", f"[METRIC :: TOKENS] +{prompt_tokens} prompt, +{completion_tokens} completion")

    def log_latency(self, latency_ms: float):
        self.log_data["metrics"]["latency_ms"].append(latency_ms)
        self.log("System", f"[METRIC :: LATENCY] {latency_ms:.2f}ms")

    def _save_log(self):
        if self.log_file is None:
            return
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, 'w', encoding='utf-8') as f:
                json.dump(self.log_data, f, ensure_ascii=False, indent=2, default=str)
        except OSError as e:
            self.logger.warning(f"Error saving log {self.log_file}: {e}")

    def reset(self, session_id: str | None = None):
        started = datetime.now(timezone.utc)
        if self.log_dir is not None:
            stem = f"{self.name}_{session_id}" if session_id else self.name
            stem = re.sub(r"[^A-Za-z0-9_.-]", "_", stem)
            self.log_file = self.log_dir / f"{stem}_{started.strftime('%Y%m%d_%H%M%S')}.json"
        self.log_data = {
            "name": self.name,
            "session_id": session_id,
            "timestamp": started.isoformat(),
            "events": [],
            "transitions": [],
            "metrics": {
                "total_tokens": 0,
                "prompt_tokens": 0,
                "completion_tokens": 0,
                "latency_ms": []
            }
        }

    def get_log_data(self) -> Dict[str, Any]:
        return self.log_data.copy()
