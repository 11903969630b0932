import csv
import io

from calculator import CalculationSession, EvaluationError, LineItem, NotReady, Ready
from export import line_item_cells, register_font, render_csv, render_pdf


def _session(area_template):
    session = CalculationSession()
    item = session.add(area_template)
    item.set_value("A", "1000")
    item.set_value("B", "1.2345")
    item.set_quantity("2")
    session.add(area_template)
    return session


def test_line_item_cells():
    assert line_item_cells(LineItem(1, "Duct", "Width: 2", 4, Ready(1234.567), 4938.268)) == [
        "1", "Duct", "Width: 2", "4", "1,234.57", "4,938.27",
    ]
    assert line_item_cells(LineItem(2, "Duct", "", 1, NotReady(), 0.0))[4] == "..."
    assert line_item_cells(LineItem(3, "Duct", "", 1, EvaluationError("x"), 0.0))[4] == "Error"
    assert line_item_cells(LineItem(None, "Grand Total", "", None, None, 34.0)) == [
        "", "Grand Total", "", "", "", "34",
    ]


def test_render_pdf(area_template):
    result = render_pdf(_session(area_template).line_items(), title="Quote <draft>")
    assert result.content.startswith(b"%PDF")
    assert result.mimetype == "application/pdf"
    assert result.warnings == ()


def test_missing_font_degrades_to_default(area_template, tmp_path):
    result = render_pdf(_session(area_template).line_items(), font_path=str(tmp_path / "nope.ttf"))
    assert result.content.startswith(b"%PDF")
    assert len(result.warnings) == 1


def test_broken_font_degrades_to_default(tmp_path):
    path = tmp_path / "broken.ttf"
    path.write_bytes(b"not a font at all")
    name, warning = register_font(str(path))
    assert name == "Helvetica"
    assert warning


def test_render_csv(area_template):
    result = render_csv(_session(area_template).line_items())
    rows = list(csv.reader(io.StringIO(result.content.decode("utf-8-sig"))))
    assert rows[0] == ["#", "Item", "Values", "Qty", "Unit result", "Total"]
    assert rows[1] == ["1", "Rectangular duct", "Width: 1,000, Height: 1.23", "2", "1,234.5", "2,469"]
    assert rows[2][4] == "..."
    assert rows[-1] == ["", "Grand Total", "", "", "", "2,469"]
