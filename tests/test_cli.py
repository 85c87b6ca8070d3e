import pandas as pd

import xtracto.cli as cli


def test_info_by_index(capsys):
    assert cli.main(["info", "3"]) == 0
    assert "erdMBsstd8day" in capsys.readouterr().out


def test_search(capsys):
    assert cli.main(["search", "chlorophyll", "--field", "long_name"]) == 0
    out = capsys.readouterr().out
    assert "erdMWchla8day" in out
    assert "erdAGssta8day" not in out


def test_list(capsys):
    assert cli.main(["list"]) == 0
    assert "ETOPO180" in capsys.readouterr().out


def test_unknown_dataset_fails():
    assert cli.main(["info", "noSuchDataset"]) == 1


def test_track_writes_csv(tmp_path, monkeypatch):
    track_file = tmp_path / "track.csv"
    track_file.write_text("lon,lat,date\n230,40,2006-01-15\n235,45,2006-01-20\n")
    output = tmp_path / "extract.csv"
    seen = {}

    def fake_extract(xpos, ypos, tpos, dtype, xlen, ylen, verbose=False, cache_size=1, on_error="raise"):
        seen.update(tpos=tpos, dtype=dtype, xlen=xlen, on_error=on_error)
        return pd.DataFrame({"mean": [1.0, 2.0]})

    monkeypatch.setattr(cli, "extract_along_trajectory", fake_extract)
    code = cli.main([
        "track", str(track_file), "erdMBsstd8day", "--xlen", "0.05", "-o", str(output),
        "--on-error", "partial",
    ])

    assert code == 0
    assert seen == {
        "tpos": ["2006-01-15", "2006-01-20"], "dtype": "erdMBsstd8day", "xlen": 0.05, "on_error": "partial",
    }
    assert pd.read_csv(output)["mean"].tolist() == [1.0, 2.0]


def test_track_file_needs_columns(tmp_path):
    track_file = tmp_path / "track.csv"
    track_file.write_text("x,y\n230,40\n")
    assert cli.main(["track", str(track_file), "1"]) == 1


def test_missing_track_file_fails(tmp_path, caplog):
    assert cli.main(["track", str(tmp_path / "nope.csv"), "1"]) == 1
    assert "nope.csv" in caplog.text
