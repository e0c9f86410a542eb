# settings.py — environment-driven configuration for the OGS bridge
"""
All knobs are plain environment variables (run_gtp2ogs.py fills them from
config.yml). The launch policy is the one structured piece and is read
straight from the YAML file.

Environment variables (common):
  OGS_USERNAME / OGS_APIKEY : bot account name and API key
  BOT_COMMAND               : engine command line, e.g. "leelaz --gtp -w net.gz"
  GAME_TIMEOUT_SEC          : forget a game after this much silence (0 = never)
  KGS_TIME                  : off | on | auto
"""
import os
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

import yaml

PRODUCTION_HOST = "online-go.com"
BETA_HOST = "beta.online-go.com"

DEFAULT_LAUNCH_ARGS = ["--playouts=75000", "--threads=2"]


def _flag(env: Mapping[str, str], key: str, default: str = "false") -> bool:
    return (env.get(key, default) or "").strip().lower() in ("1", "true", "yes", "y", "on")


def _csv(value: str) -> List[str]:
    return [p.strip().lower() for p in (value or "").split(",") if p.strip()]


@dataclass
class LaunchPolicy:
    """Extra engine arguments picked by who is playing.

    players maps an OGS player id to the argument list used when that
    player sits on either side of the board; anybody else gets `default`.
    """
    default: List[str] = field(default_factory=lambda: list(DEFAULT_LAUNCH_ARGS))
    players: Dict[int, List[str]] = field(default_factory=dict)
    logfile_arg: Optional[str] = None

    def args_for(self, black_id, white_id, game_id) -> List[str]:
        args = None
        for pid in (black_id, white_id):
            try:
                key = int(pid)
            except (TypeError, ValueError):
                continue
            if key in self.players:
                args = self.players[key]
                break
        out = list(self.default if args is None else args)
        if self.logfile_arg:
            out.append(self.logfile_arg.format(game_id=game_id))
        return out

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "LaunchPolicy":
        raw = raw or {}
        default = raw.get("default")
        players = {}
        for pid, args in (raw.get("players") or {}).items():
            players[int(pid)] = [str(a) for a in (args or [])]
        return cls(
            default=[str(a) for a in default] if default is not None else list(DEFAULT_LAUNCH_ARGS),
            players=players,
            logfile_arg=raw.get("logfile_arg") or None,
        )


def load_launch_policy(cfg_path: str = "config.yml") -> LaunchPolicy:
    """Read the `launch_policy:` section; fall back to the defaults if absent."""
    if not cfg_path or not os.path.exists(cfg_path):
        return LaunchPolicy()
    with open(cfg_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    return LaunchPolicy.from_dict(cfg.get("launch_policy"))


@dataclass
class ChallengePolicy:
    rules: List[str] = field(default_factory=lambda: ["japanese", "aga", "chinese", "korean"])
    board_size: int = 19
    min_rank: int = 15
    min_period_sec: float = 20
    reject_correspondence: bool = True


@dataclass
class Settings:
    username: str = ""
    apikey: str = ""
    host: str = PRODUCTION_HOST
    port: int = 443
    insecure: bool = False
    bot_command: List[str] = field(default_factory=list)

    timeout_sec: float = 0            # per-game idle timer, 0 disables it
    startup_buffer_sec: float = 5
    persist: bool = False
    kgs_time: str = "off"             # off | on | auto
    no_clock: bool = False
    json: bool = False
    debug: bool = False

    ping_interval_sec: float = 10
    keepalive_interval_sec: float = 10

    challenge: ChallengePolicy = field(default_factory=ChallengePolicy)
    launch_policy: LaunchPolicy = field(default_factory=LaunchPolicy)

    @property
    def url(self) -> str:
        scheme = "http" if self.insecure else "https"
        return f"{scheme}://{self.host}:{self.port}"

    @property
    def connect_grace_sec(self) -> float:
        # the production host can be slow to answer; anything else is local/dev
        return 5.0 if self.host.endswith(PRODUCTION_HOST) else 0.5

    def missing(self) -> List[str]:
        out = []
        if not self.username:
            out.append("OGS_USERNAME")
        if not self.apikey:
            out.append("OGS_APIKEY")
        if not self.bot_command:
            out.append("BOT_COMMAND")
        return out

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        host = env.get("OGS_HOST", PRODUCTION_HOST).strip() or PRODUCTION_HOST
        if _flag(env, "OGS_BETA"):
            host = BETA_HOST
        kgs_time = env.get("KGS_TIME", "off").strip().lower()
        if kgs_time in ("1", "true", "yes", "y"):
            kgs_time = "on"
        elif kgs_time not in ("on", "auto"):
            kgs_time = "off"

        challenge = ChallengePolicy(
            rules=_csv(env.get("ACCEPT_RULES", "japanese,aga,chinese,korean")),
            board_size=int(env.get("ACCEPT_BOARD_SIZE", "19")),
            min_rank=int(env.get("MIN_CHALLENGER_RANK", "15")),
            min_period_sec=float(env.get("MIN_PERIOD_SEC", "20")),
            reject_correspondence=_flag(env, "REJECT_CORRESPONDENCE", "true"),
        )
        return cls(
            username=env.get("OGS_USERNAME", "").strip(),
            apikey=env.get("OGS_APIKEY", "").strip(),
            host=host,
            port=int(env.get("OGS_PORT", "443")),
            insecure=_flag(env, "OGS_INSECURE"),
            bot_command=shlex.split(env.get("BOT_COMMAND", "")),
            timeout_sec=float(env.get("GAME_TIMEOUT_SEC", "0")),
            startup_buffer_sec=float(env.get("STARTUP_BUFFER_SEC", "5")),
            persist=_flag(env, "BOT_PERSIST"),
            kgs_time=kgs_time,
            no_clock=_flag(env, "NO_CLOCK"),
            json=_flag(env, "GTP_JSON"),
            debug=_flag(env, "DEBUG"),
            ping_interval_sec=float(env.get("PING_INTERVAL_SEC", "10")),
            keepalive_interval_sec=float(env.get("KEEPALIVE_INTERVAL_SEC", "10")),
            challenge=challenge,
            launch_policy=load_launch_policy(env.get("LAUNCH_POLICY_FILE", "config.yml")),
        )
