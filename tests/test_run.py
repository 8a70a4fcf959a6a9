"""
Tests for the command-line runner
"""

import pandas as pd

import run


def _write_bars(path, bars):
    pd.DataFrame([{'time': b.time, 'open': b.open, 'high': b.high, 'low': b.low,
                   'close': b.close, 'volume': b.volume} for b in bars]).to_csv(path, index=False)


class TestMain:
    """Test run.main end to end"""

    def test_backtest_run(self, tmp_path, breakout_day, capsys):
        bars_path = tmp_path / 'bars.csv'
        trades_path = tmp_path / 'trades.csv'
        snaps_path = tmp_path / 'snaps.csv'
        _write_bars(bars_path, breakout_day)

        code = run.main(['--bars', str(bars_path), '--symbol', 'SPY',
                         '--trades-out', str(trades_path), '--snapshots-out', str(snaps_path),
                         '--log-level', 'warning'])

        assert code == 0
        assert 'BACKTEST RESULTS - SPY' in capsys.readouterr().out
        assert trades_path.exists()
        snaps = pd.read_csv(snaps_path)
        assert len(snaps) == len(breakout_day)
        assert 'EMA_9_value' in snaps.columns
        assert 'long_status' in snaps.columns

    def test_bad_config(self, tmp_path, capsys):
        config_path = tmp_path / 'config.yaml'
        config_path.write_text("engine:\n  risk:\n    stop_multiplier: -1\n")
        code = run.main(['--bars', 'unused.csv', '--config', str(config_path)])
        assert code == 1
        assert 'Error loading configuration' in capsys.readouterr().out

    def test_missing_bars_file(self, tmp_path, capsys):
        code = run.main(['--bars', str(tmp_path / 'missing.csv')])
        assert code == 1
        assert 'Error running backtest' in capsys.readouterr().out

    def test_out_of_order_bars(self, tmp_path, breakout_day, capsys):
        bars_path = tmp_path / 'bars.csv'
        _write_bars(bars_path, list(reversed(breakout_day)))
        code = run.main(['--bars', str(bars_path)])
        assert code == 1
        assert 'not after previous bar' in capsys.readouterr().out

