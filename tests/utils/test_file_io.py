import pytest
import json
import numpy as np
import pandas as pd

from fastml.utils.file_io import read_dataframe, save_dataframe, save_json


def test_save_json_handles_numpy(tmp_path):
    path = save_json({'n': np.int64(3), 'x': np.float32(0.5), 'flag': np.bool_(True),
                      'arr': np.arange(2), 'where': tmp_path}, tmp_path / "nested" / "meta.json")
    payload = json.loads(path.read_text())
    assert payload == {'n': 3, 'x': 0.5, 'flag': True, 'arr': [0, 1], 'where': str(tmp_path)}


def test_save_dataframe_with_excel_copy(tmp_path):
    df = pd.DataFrame({1: [1.0, 2.0], 'mixed': ['a', 3]})
    path = save_dataframe(df, tmp_path / "table.parquet", excel_copy=True)
    loaded = read_dataframe(path)
    assert list(loaded.columns) == ['1', 'mixed']
    assert loaded['mixed'].tolist() == ['a', '3']
    assert (tmp_path / "table.xlsx").exists()


def test_read_csv(tmp_path):
    pd.DataFrame({'a': [1, 2]}).to_csv(tmp_path / "a.csv", index=False)
    assert read_dataframe(tmp_path / "a.csv")['a'].tolist() == [1, 2]


def test_read_unsupported(tmp_path):
    with pytest.raises(ValueError, match="Unsupported"):
        read_dataframe(tmp_path / "data.json")
