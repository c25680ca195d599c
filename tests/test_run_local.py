# tests/test_run_local.py
from backend.run_local import main
import pathlib


def test_report_for_sample_csv(capsys):
    main(pathlib.Path(__file__).parent / "sample.csv", days=10)
    out = capsys.readouterr().out
    assert "Parsed 3 readings" in out
    assert "house-power" in out
    # 105 units over 10 days
    assert "daily average: 10.500" in out
    assert "projected in 10 days: 6785.4" in out
