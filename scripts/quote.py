"""
Quote a position from the command line against the live CoinGecko price.

Run from the repo root:
  python -m scripts.quote BTC short 102500 1500 7 --sl 104500 --tp 90415
  python -m scripts.quote BTC short 102500 1500 7 --sl 104500 --add 1500@96000
  python -m scripts.quote ETH long 3000 500 5 --reduce 200@3300 --csv data/eth.csv
"""
import argparse
import sys

from data.feed import get_price
from engine.models import Position, ADD, SUBTRACT
from engine.projection import build_adjustment, commit, evaluate, project
from engine.validation import ValidationFailed
from monitoring.chain_report import chain_frame, export_chain


def _size_at_price(text: str) -> tuple[float, float]:
    size, _, price = text.partition('@')
    try:
        return float(size), float(price)
    except ValueError:
        raise argparse.ArgumentTypeError(f'expected SIZE@PRICE, got {text!r}')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Perpetual futures position calculator')
    parser.add_argument('symbol')
    parser.add_argument('direction', choices=['long', 'short'])
    parser.add_argument('entry_price', type=float)
    parser.add_argument('size', type=float, help='USD margin')
    parser.add_argument('leverage', type=float)
    parser.add_argument('--sl', type=float, default=None, help='stop loss price')
    parser.add_argument('--tp', type=float, default=None, help='take profit price')
    parser.add_argument('--add', type=_size_at_price, action='append', default=[],
                        metavar='SIZE@PRICE', help='append an add (uses --add-leverage)')
    parser.add_argument('--add-leverage', type=float, default=None)
    parser.add_argument('--reduce', type=_size_at_price, action='append', default=[],
                        metavar='SIZE@PRICE', help='append a reduce')
    parser.add_argument('--preview', type=_size_at_price, default=None, metavar='SIZE@PRICE',
                        help='project one more add without committing it')
    parser.add_argument('--price', type=float, default=None, help='override the live price')
    parser.add_argument('--csv', default=None, help='export the per-step table to CSV')
    return parser


def _print_metrics(label: str, metrics):
    m = metrics.to_dict()
    print(f'\n── {label} ──')
    for key in ('average_entry_price', 'total_size', 'average_leverage', 'notional',
                'risk_amount', 'reward_amount', 'risk_reward_ratio',
                'liquidation_price', 'pnl', 'pnl_percentage', 'realized_pnl'):
        value = m[key]
        print(f'  {key:<20} {"-" if value is None else f"{value:,.2f}"}')


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    position = Position.open(
        args.symbol, args.direction, args.entry_price, args.size, args.leverage,
        stop_loss=args.sl, take_profit=args.tp,
    )
    add_leverage = args.add_leverage or args.leverage

    try:
        for size, price in args.add:
            position = commit(position, build_adjustment(position, ADD, price, size, add_leverage))
        for size, price in args.reduce:
            position = commit(position, build_adjustment(position, SUBTRACT, price, size))
    except ValidationFailed as e:
        print(f'Rejected: {e}', file=sys.stderr)
        return 2

    current = args.price
    if current is None:
        live = get_price(position.symbol)
        current = live.price if live else None
        if live:
            print(f'{live.symbol} ${live.price:,.2f} ({live.change24h:+.2f}% 24h)')
        else:
            print(f'No live price for {position.symbol}; P&L omitted')

    _print_metrics('Current', evaluate(position, current))

    if args.preview:
        size, price = args.preview
        try:
            proposed = build_adjustment(position, ADD, price, size, add_leverage)
            _print_metrics(f'Preview add ${size:,.2f} @ {price:,.2f}', project(position, proposed, current))
        except ValidationFailed as e:
            print(f'Preview rejected: {e}', file=sys.stderr)

    if len(position.entries) > 1:
        print()
        print(chain_frame(position, current).drop(columns=['time']).round(2).to_string())

    if args.csv:
        export_chain(position, args.csv, current)
    return 0


if __name__ == '__main__':
    sys.exit(main())
