import json
from pathlib import Path

import pytest

from normal_form_audit import (
    DatabaseClient,
    NormalForm,
    SampleReader,
    SchemaError,
    SchemaReflector,
    ViolationKind,
    apply_annotations,
    audit_schema,
    main,
)
from seed_normalization_examples import build_engine, seed, split_statements

SAMPLES = Path(__file__).resolve().parent.parent / "samples"


@pytest.fixture
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'examples.db'}"
    engine = build_engine(url)
    try:
        assert seed(engine) is True
    finally:
        engine.dispose()
    return url


@pytest.fixture
def client(db_url):
    client = DatabaseClient(db_url)
    yield client
    client.dispose()


def test_seed_is_idempotent(db_url):
    engine = build_engine(db_url)
    try:
        assert seed(engine) is False
    finally:
        engine.dispose()


def test_split_statements_skips_comments():
    statements = list(split_statements("-- note\nCREATE TABLE t (a INTEGER);\nINSERT INTO t VALUES (1);\n"))
    assert statements == ["CREATE TABLE t (a INTEGER)", "INSERT INTO t VALUES (1)"]


def test_reflection_reads_keys_and_foreign_keys(client):
    schema = SchemaReflector(client).reflect()

    assert len(schema.tables) == 10
    assert schema.table("bad_orders").candidate_keys == (frozenset({"order_id", "product_id"}),)
    assert schema.table("cities").candidate_keys == (frozenset({"city_id"}), frozenset({"city", "zipcode"}))
    fks = schema.table("customers").foreign_keys
    assert [(fk.columns, fk.referred_table, fk.referred_columns) for fk in fks] == [(("city_id",), "cities", ("city_id",))]
    assert schema.table("bad_contacts").column("phones").data_type.startswith("varchar")


def test_annotated_reflection_audit(client):
    annotations = json.loads((SAMPLES / "tutorial_schema.json").read_text())
    schema = apply_annotations(SchemaReflector(client).reflect(), annotations)
    report = audit_schema(schema, SampleReader(client).fetch_all(schema))

    assert report.table("bad_contacts").normal_form is NormalForm.UNNORMALIZED
    assert len(report.table("bad_orders").violations_of(ViolationKind.TWO_NF)) == 2
    third = report.table("bad_customers").violations_of(ViolationKind.THREE_NF)
    assert len(third) == 1
    assert len(third[0].example_rows) == 2
    assert report.table("cities").in_third_normal_form
    assert report.table("customers").in_third_normal_form


def test_annotation_for_unknown_column_rejected(client):
    annotations = {"tables": [{"name": "cities", "columns": [{"name": "population", "multivalued": True}]}]}
    with pytest.raises(SchemaError):
        apply_annotations(SchemaReflector(client).reflect(), annotations)


def test_sample_reader_respects_limit(client):
    rows = SampleReader(client).fetch_rows("bad_customers", limit=1)
    assert len(rows) == 1
    assert set(rows[0]) == {"customer_id", "customer_name", "city", "zipcode"}


def test_cli_with_url(db_url, capsys):
    code = main([str(SAMPLES / "tutorial_schema.json"), "--url", db_url, "--format", "json", "--quiet"])

    assert code == 1
    out = json.loads(capsys.readouterr().out)
    forms = {t["table"]: t["normal_form"] for t in out["tables"]}
    assert forms["bad_customers"] == "2NF"
    assert forms["order_items"] == "3NF"


def test_cli_with_unreachable_database(tmp_path):
    url = f"sqlite:///{tmp_path / 'missing' / 'nowhere.db'}"
    assert main(["--url", url, "--quiet"]) == 2
