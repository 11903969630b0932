import pytest

from app import create_app
from catalog import ProductTemplate, TemplateStore, Variable


@pytest.fixture
def store(tmp_path):
    return TemplateStore(str(tmp_path / "catalog.json"))


@pytest.fixture
def defaults():
    return {"quantity": 1, "export_title": "Calculation Sheet"}


@pytest.fixture
def app(store, defaults):
    app = create_app(store=store, defaults=defaults)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def area_template():
    return ProductTemplate(
        id="area",
        name="Rectangular duct",
        formula="A*B",
        variables=(Variable("A", "Width"), Variable("B", "Height")),
    )


@pytest.fixture
def flat_template():
    return ProductTemplate(
        id="flat",
        name="Grille",
        formula="A",
        variables=(Variable("A", "Price"),),
    )
