import logging
import os
import shutil
import subprocess
import time
from typing import List, Optional, Tuple

log = logging.getLogger("hotspot_enabler.engine.runner")

_CMD_TIMEOUT_S = 10.0


class CommandRunner:
    """
    The single boundary through which every external effect passes.

    A missing tool, a timeout or a spawn error is reported as a failed
    command, never raised.
    """

    def __init__(self, timeout_s: float = _CMD_TIMEOUT_S):
        self.timeout_s = timeout_s

    def run_capturing(self, cmd: List[str]) -> Tuple[str, bool]:
        try:
            p = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s)
        except subprocess.TimeoutExpired:
            log.warning("cmd_timeout cmd=%s", " ".join(cmd))
            return "", False
        except OSError as exc:
            log.debug("cmd_spawn_failed cmd=%s err=%s", " ".join(cmd), exc)
            return "", False
        return p.stdout or "", p.returncode == 0

    def run_silent(self, cmd: List[str]) -> int:
        try:
            p = subprocess.run(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired:
            log.warning("cmd_timeout cmd=%s", " ".join(cmd))
            return 124
        except OSError as exc:
            log.debug("cmd_spawn_failed cmd=%s err=%s", " ".join(cmd), exc)
            return 127
        return p.returncode

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)

    def pid_alive(self, pid: Optional[int]) -> bool:
        if not pid or pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def send_signal(self, pid: int, sig: int) -> bool:
        try:
            os.kill(pid, sig)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)
