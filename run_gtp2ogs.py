#!/usr/bin/env python3
# run_gtp2ogs.py — config.yml launcher for ogs_bot.py
import argparse
import os
import shlex
import sys

import yaml


def setenv(k, v):
    if v is None:
        return
    if isinstance(v, bool):
        v = "true" if v else "false"
    if isinstance(v, (list, tuple)):
        v = ",".join(str(x) for x in v)
    os.environ[k] = str(v)


def bot_command(cfg, extra):
    # anything after `--` on the command line wins over the yaml engine entry
    if extra:
        return " ".join(shlex.quote(a) for a in extra)
    eng = cfg.get("engine") or {}
    cmd = eng.get("command")
    if isinstance(cmd, list):
        return " ".join(shlex.quote(str(a)) for a in cmd)
    return cmd


def apply_config_to_env(cfg, config_path, extra=None):
    # --- account ---
    ogs = cfg.get("ogs") or {}
    if not os.getenv("OGS_APIKEY"):
        setenv("OGS_APIKEY", (ogs.get("apikey") or "").strip() or None)
    setenv("OGS_USERNAME", ogs.get("username"))
    setenv("OGS_HOST", ogs.get("host"))
    setenv("OGS_PORT", ogs.get("port"))
    setenv("OGS_INSECURE", ogs.get("insecure"))
    setenv("OGS_BETA", ogs.get("beta"))

    # --- engine ---
    eng = cfg.get("engine") or {}
    setenv("BOT_COMMAND", bot_command(cfg, extra))
    setenv("BOT_PERSIST", eng.get("persist"))
    setenv("KGS_TIME", eng.get("kgs_time"))
    setenv("NO_CLOCK", eng.get("no_clock"))
    setenv("GTP_JSON", eng.get("json"))
    setenv("STARTUP_BUFFER_SEC", eng.get("startup_buffer_sec"))

    # --- games ---
    games = cfg.get("games") or {}
    setenv("GAME_TIMEOUT_SEC", games.get("timeout_sec"))

    # --- challenge policy ---
    ch = cfg.get("challenge") or {}
    setenv("ACCEPT_RULES", ch.get("rules"))
    setenv("ACCEPT_BOARD_SIZE", ch.get("board_size"))
    setenv("MIN_CHALLENGER_RANK", ch.get("min_rank"))
    setenv("MIN_PERIOD_SEC", ch.get("min_period_sec"))
    setenv("REJECT_CORRESPONDENCE", ch.get("reject_correspondence"))

    # --- misc ---
    setenv("PING_INTERVAL_SEC", cfg.get("ping_interval_sec"))
    setenv("KEEPALIVE_INTERVAL_SEC", cfg.get("keepalive_interval_sec"))
    setenv("DEBUG", cfg.get("debug"))
    # the launch policy is structured, settings.py reads it from the file itself
    setenv("LAUNCH_POLICY_FILE", config_path)


def main(argv=None):
    ap = argparse.ArgumentParser(description="Connect a GTP engine to online-go.com")
    ap.add_argument("--config", default="config.yml")
    ap.add_argument("bot", nargs=argparse.REMAINDER, help="engine command line after --")
    args = ap.parse_args(argv)
    extra = args.bot[1:] if args.bot[:1] == ["--"] else args.bot

    try:
        with open(args.config, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"[run_gtp2ogs] Could not open {args.config}.")
        sys.exit(2)

    apply_config_to_env(cfg, args.config, extra)

    import ogs_bot
    sys.exit(ogs_bot.start())


if __name__ == "__main__":
    main()
