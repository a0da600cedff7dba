import json

import pytest
from PIL import Image

from spritepatch.detect.gemini import GeminiRegionDetector, parse_analysis_response, resolve_api_key
from spritepatch.detect.heuristic import scan_sprite_sheet
from spritepatch.errors import ConfigurationError, DetectorError, DetectorParseError
from spritepatch.models import Rect

_PAYLOAD = {
    "mainBody": {"x": 0, "y": 20, "w": 1000, "h": 800},
    "mainFace": {"x": 400, "y": 150, "w": 180, "h": 120},
    "patches": [{"x": 100, "y": 850, "w": 150, "h": 150}, {"x": 300, "y": 850, "w": 150, "h": 150}],
}


def test_heuristic_scan_finds_figure_top() -> None:
    image = Image.new("RGBA", (500, 400), color=(0, 0, 0, 0))
    image.paste((200, 180, 160, 255), (0, 100, 500, 400))
    result = scan_sprite_sheet(image)

    # 1000 px working width: the figure starts at row 200 of an 800 row scan.
    assert 198 <= result.main_body.y <= 200
    assert result.main_body.x == 0
    assert result.main_body.w == 1000
    assert result.main_body.h == 800
    assert result.main_face == Rect(x=350, y=150, w=300, h=300)
    assert result.patches == []


def test_heuristic_scan_ignores_sparse_rows() -> None:
    image = Image.new("RGBA", (1000, 1000), color=(0, 0, 0, 0))
    image.paste((255, 255, 255, 255), (0, 50, 5, 51))
    assert scan_sprite_sheet(image).main_body.y == 0


def test_parse_analysis_response_strips_code_fences() -> None:
    text = "```json\n" + json.dumps(_PAYLOAD) + "\n```"
    result = parse_analysis_response(text)
    assert result.main_face == Rect(x=400, y=150, w=180, h=120)
    assert len(result.patches) == 2
    assert result.to_dict()["patches"][1]["x"] == 300


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "not json at all",
        "[1, 2, 3]",
        json.dumps({"mainBody": _PAYLOAD["mainBody"]}),
        json.dumps({**_PAYLOAD, "mainFace": {"x": "left", "y": 0, "w": 1, "h": 1}}),
    ],
)
def test_parse_analysis_response_rejects_malformed_replies(text: str) -> None:
    with pytest.raises(DetectorParseError):
        parse_analysis_response(text)


def test_missing_api_key_is_a_configuration_error(monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("API_KEY", "undefined")
    with pytest.raises(ConfigurationError):
        resolve_api_key(None)
    with pytest.raises(ConfigurationError):
        GeminiRegionDetector()


def test_api_key_resolution_order(monkeypatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "from-env")
    assert resolve_api_key(None) == "from-env"
    assert resolve_api_key("explicit") == "explicit"


def test_detector_parses_client_reply(monkeypatch) -> None:
    class _Reply:
        text = "```json " + json.dumps(_PAYLOAD) + " ```"

    class _Models:
        def __init__(self) -> None:
            self.calls: list[dict] = []

        def generate_content(self, **kwargs):
            self.calls.append(kwargs)
            return _Reply()

    class _Client:
        models = _Models()

    pytest.importorskip("google.genai")
    detector = GeminiRegionDetector(api_key="test-key", model="test-model")
    monkeypatch.setattr(detector, "_get_client", lambda: _Client())

    result = detector.detect(Image.new("RGBA", (64, 64)))
    assert result.main_body == Rect(x=0, y=20, w=1000, h=800)
    assert _Client.models.calls[0]["model"] == "test-model"


def test_heuristic_scan_includes_last_row_of_top_band() -> None:
    # 1001 rows: the top 40% band ends at row 400.4, so row 400 is still scanned.
    image = Image.new("RGBA", (1000, 1001), color=(0, 0, 0, 0))
    image.paste((255, 255, 255, 255), (0, 400, 1000, 401))
    assert scan_sprite_sheet(image).main_body.y == 400


def test_detector_wraps_client_failures(monkeypatch) -> None:
    class _Models:
        def generate_content(self, **kwargs):
            raise ConnectionError("503 service unavailable")

    class _Client:
        models = _Models()

    pytest.importorskip("google.genai")
    detector = GeminiRegionDetector(api_key="test-key")
    monkeypatch.setattr(detector, "_get_client", lambda: _Client())

    with pytest.raises(DetectorError) as excinfo:
        detector.detect(Image.new("RGBA", (32, 32)))
    assert isinstance(excinfo.value.__cause__, ConnectionError)
