from clustermf.shared.config import Settings, _read_settings, _write_settings


def test_settings_roundtrip(tmp_path) -> None:
    path = tmp_path / "clustermfrc.yml"
    settings = Settings(PRINT_LEVEL=10, PINV_RTOL=1e-10)
    _write_settings(settings, path)
    assert _read_settings(path) == settings


def test_missing_keys_take_defaults(tmp_path) -> None:
    path = tmp_path / "clustermfrc.yml"
    path.write_text("PRINT_LEVEL: 3\n")
    settings = _read_settings(path)
    assert settings.PRINT_LEVEL == 3
    assert settings.PINV_RTOL is None
