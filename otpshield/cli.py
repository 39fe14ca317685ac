"""
otpshield/cli.py
Command-line interface for OTPShield.

USAGE:
  otpshield analyze "HDFCBK: 123456 is your OTP. Do not share."
  otpshield analyze "Share OTP 998877 now" --sender SCAMBANK --no-update
  otpshield sender HDFCBK
  otpshield lookup "+1 (612) 555-0001"
  otpshield call +16125550001 --duration 95 --answered
  otpshield feedback +16125550001 scam --user alice
  otpshield feedback HDFCBK safe --sender
  otpshield history --phone +16125550001
  otpshield serve --port 8765
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from otpshield.api import OTPShieldAPI
from otpshield.config import load_config

logger = logging.getLogger(__name__)

# ANSI colors
GREEN  = '\033[92m'
YELLOW = '\033[93m'
RED    = '\033[91m'
CYAN   = '\033[96m'
RESET  = '\033[0m'
BOLD   = '\033[1m'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog        = 'otpshield',
        description = 'OTPShield — OTP phishing and robocall trust scoring',
        formatter_class = argparse.RawDescriptionHelpFormatter,
        epilog = """
NOTE:
  Location risk and sender behaviour components are simulated.
  Scores are demonstration output, not fraud verdicts.
        """
    )
    parser.add_argument('--db', type=Path, default=None,
                        help='SQLite state file (default: from otpshield_config.json)')
    parser.add_argument('--config-dir', type=Path, default=None,
                        help='Directory holding otpshield_config.json (default: cwd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('analyze', help='Analyze one SMS message')
    p.add_argument('message')
    p.add_argument('--sender', default=None, help='Sender ID when the message has no header')
    p.add_argument('--device', default=None, help='Device identifier')
    p.add_argument('--no-update', action='store_true', help='Do not update sender trust')

    p = sub.add_parser('sender', help='Show sender trust score')
    p.add_argument('sender_id')

    p = sub.add_parser('lookup', help='Search a phone number')
    p.add_argument('number')

    p = sub.add_parser('call', help='Record a call')
    p.add_argument('number')
    p.add_argument('--duration', type=float, default=0, help='Seconds (default: 0)')
    p.add_argument('--outgoing', action='store_true', help='Outgoing call (default: incoming)')
    p.add_argument('--answered', action='store_true', help='Call was answered')

    p = sub.add_parser('feedback', help='Rate a number or sender')
    p.add_argument('target', help='Phone number, or sender ID with --sender')
    p.add_argument('feedback_type', choices=['safe', 'suspicious', 'scam'])
    p.add_argument('--sender', action='store_true', help='Target is an SMS sender ID')
    p.add_argument('--user', default=None, help='User identifier')

    p = sub.add_parser('history', help='Show call history')
    p.add_argument('--phone', default=None, help='Filter by phone number')

    p = sub.add_parser('serve', help='Run the local HTTP API')
    p.add_argument('--host', default=None)
    p.add_argument('--port', type=int, default=None)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # ── LOGGING SETUP ────────────────────────────────────────
    logging.basicConfig(
        level   = logging.DEBUG if args.verbose else logging.WARNING,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    config = load_config(args.config_dir)
    db_path = args.db or config['db_path']

    if args.command == 'serve':
        from otpshield.api import serve
        serve(
            host    = args.host or config['api_host'],
            port    = args.port or int(config['api_port']),
            db_path = str(db_path),
        )
        return 0

    with OTPShieldAPI(db_path=db_path, config=config) as api:
        try:
            return _dispatch(api, args)
        except ValueError as e:
            _print(f"{RED}Error: {e}{RESET}")
            return 1


def _dispatch(api: OTPShieldAPI, args) -> int:
    if args.command == 'analyze':
        if args.no_update:
            analysis, trust = api.analyze_message(args.message, args.device, args.sender), None
        else:
            out = api.process_message(args.message, args.device, args.sender)
            analysis, trust = out['analysis'], out['sender_trust']
        _show_analysis(analysis)
        if trust:
            _show_trust(f"Sender {trust['sender_id']}", trust)
        return 0

    if args.command == 'sender':
        trust = api.get_trust_score(args.sender_id)
        _show_trust(f"Sender {trust['sender_id']}", trust)
        return 0

    if args.command == 'lookup':
        view = api.lookup_number(args.number)
        _show_trust(f"{view['formatted_number']} [{view['data_source']}]", view)
        return 0

    if args.command == 'call':
        call = api.record_call(
            args.number,
            duration     = args.duration,
            direction    = 'outgoing' if args.outgoing else 'incoming',
            was_answered = args.answered,
        )
        _ok(f"Call recorded: {call['phone_number']} {call['direction']} {call['duration']:.0f}s")
        _show_trust(call['phone_number'], api.get_call_trust_score(call['phone_number']))
        return 0

    if args.command == 'feedback':
        if args.sender:
            trust = api.record_sender_feedback(args.target, args.feedback_type, user_id=args.user)
            _show_trust(f"Sender {trust['sender_id']}", trust)
            return 0
        result = api.record_call_feedback(args.target, args.feedback_type, user_id=args.user)
        if result.get('error'):
            _print(f"{YELLOW}⚠ {result['message']}{RESET}")
            return 2
        _show_trust(result['phone_number'], result)
        return 0

    if args.command == 'history':
        calls = api.get_call_history(args.phone)
        if not calls:
            _print(f"{YELLOW}No calls recorded.{RESET}")
        for c in calls:
            flag = ' ★' if c['has_user_feedback'] else ''
            answered = 'answered' if c['was_answered'] else 'missed'
            _print(f"  {c['timestamp'][:19]}  {c['phone_number']:<15} "
                   f"{c['direction']:<9} {answered:<8} {c['duration']:>5.0f}s{flag}")
        return 0

    return 1


# ── PRINT HELPERS ────────────────────────────────────────────

def _show_analysis(a: Dict[str, Any]) -> None:
    if not a['is_otp_message']:
        _print(f"  {CYAN}→{RESET} {a['analysis']} (sender {a['sender_id']})")
        return
    color = RED if a['is_blocked'] else GREEN
    _print(f"\n{BOLD}{color}{a['analysis']}{RESET}")
    _print(f"  Sender     : {a['sender_id']} ({'trusted' if a['is_trusted_sender'] else 'untrusted'})")
    _print(f"  Risk score : {a['risk_score']:.2f}")
    rc = a['risk_components']
    _print(f"    sender {rc['sender_risk']:.2f} | message {rc['message_risk']:.2f} "
           f"| location {rc['location_risk']:.2f}")
    _print(f"  Reason     : {a['classification']['reason']}")


def _show_trust(title: str, t: Dict[str, Any]) -> None:
    _print(f"\n{BOLD}{title}{RESET}")
    _print(f"  Trust score : {t['score']:.1f}  {CYAN}{t['status']['label']}{RESET}")
    _print(f"  Updated     : {t['last_updated']}")


def _ok(msg):    _print(f"  {GREEN}✓{RESET} {msg}")
def _print(msg): print(msg)


if __name__ == '__main__':
    sys.exit(main())
