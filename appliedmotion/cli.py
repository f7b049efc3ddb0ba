"""
Command-line tool for ST drives.

Example:
    appliedmotion-st --protocol ip --uri 10.10.10.10:7776 status
    appliedmotion-st --protocol rs232 --uri /dev/ttyUSB0 go-for 600 0.5
    appliedmotion-st --uri 10.10.10.10:7776 raw AC
"""

import argparse
import logging
import sys
import threading
from typing import List, Optional

from .config import MotorConfig
from .errors import STError
from .motor import STMotor, new_motor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='appliedmotion-st',
        description='Drive an Applied Motion Products ST stepper drive',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example:
    appliedmotion-st --uri 10.10.10.10:7776 reset 0
    appliedmotion-st --uri 10.10.10.10:7776 go-for 600 0.1 --acceleration 10
    appliedmotion-st --uri 10.10.10.10:7776 position

Press Ctrl-C during a move to stop the motor.
        """
    )
    parser.add_argument('--protocol', default='ip', choices=['ip', 'rs232', 'rs485'],
                        help='Transport (default: ip)')
    parser.add_argument('--uri', '-u', required=True,
                        help='host:port for ip, device path for serial')
    parser.add_argument('--steps-per-rev', type=int, default=20000,
                        help='Motor steps per revolution (default: 20000)')
    parser.add_argument('--max-rpm', type=float, default=900.0,
                        help='Maximum speed in rpm (default: 900)')
    parser.add_argument('--baudrate', '-b', type=int, default=9600,
                        help='Serial baudrate (default: 9600)')
    parser.add_argument('--timeout', type=float, default=0.0,
                        help='Connect timeout in seconds (default: 5)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log every command sent to the drive')

    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('status', help='Show status word and buffer')
    sub.add_parser('position', help='Show position in revolutions')
    sub.add_parser('stop', help='Stop and clear queued moves')

    for name, target in (('go-for', 'revolutions'), ('go-to', 'position')):
        move = sub.add_parser(name, help=f'Move by/to {target}')
        move.add_argument('rpm', type=float)
        move.add_argument(target, type=float)
        move.add_argument('--acceleration', type=float,
                          help='Acceleration override for this move (rev/s^2)')
        move.add_argument('--deceleration', type=float,
                          help='Deceleration override for this move (rev/s^2)')

    reset = sub.add_parser('reset', help='Reset the zero position')
    reset.add_argument('offset', type=float, nargs='?', default=0.0)

    raw = sub.add_parser('raw', help='Send a raw eSCL command')
    raw.add_argument('raw_command')

    return parser


def _run_move(motor: STMotor, args: argparse.Namespace) -> None:
    extra = {}
    if args.acceleration is not None:
        extra['acceleration'] = args.acceleration
    if args.deceleration is not None:
        extra['deceleration'] = args.deceleration

    if args.command == 'go-for':
        move, distance = motor.go_for, args.revolutions
    else:
        move, distance = motor.go_to, args.position

    # Run the move in a worker so Ctrl-C here can cancel it.
    cancel = threading.Event()
    errors: List[BaseException] = []

    def worker():
        try:
            move(args.rpm, distance, extra, cancel)
        except BaseException as e:
            errors.append(e)

    thread = threading.Thread(target=worker, daemon=True)
    thread.start()
    try:
        while thread.is_alive():
            thread.join(timeout=0.1)
    except KeyboardInterrupt:
        print("\nStopping...")
        cancel.set()
        thread.join()
    if errors:
        raise errors[0]


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    config = MotorConfig(
        protocol=args.protocol,
        uri=args.uri,
        steps_per_rev=args.steps_per_rev,
        max_rpm=args.max_rpm,
        baudrate=args.baudrate,
        connect_timeout=args.timeout,
    )

    try:
        with new_motor(config, name=args.uri) as motor:
            if args.command == 'status':
                print(motor.get_status())
                print(f"Buffer: {motor.get_buffer_status()} free")
            elif args.command == 'position':
                print(f"{motor.position():.6f}")
            elif args.command == 'stop':
                motor.stop()
            elif args.command == 'reset':
                motor.reset_zero_position(args.offset)
            elif args.command == 'raw':
                print(motor.do_command({'command': args.raw_command})['response'])
            else:
                _run_move(motor, args)
                print(f"Position: {motor.position():.6f}")
    except STError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


def main() -> None:
    sys.exit(run_cli())


if __name__ == '__main__':
    main()
