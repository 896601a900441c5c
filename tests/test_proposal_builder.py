from normal_form_audit import (
    Column,
    FunctionalDependency,
    NormalFormChecker,
    ProposalBuilder,
    Table,
    Violation,
    ViolationKind,
)


def _table(name, columns, key, fds=(), multivalued=()):
    return Table(
        name=name,
        columns=tuple(Column(c, multivalued=c in multivalued) for c in columns),
        candidate_keys=(frozenset(key),),
        functional_dependencies=tuple(FunctionalDependency(frozenset(d), frozenset(e)) for d, e in fds),
    )


def test_proposal_builder_2nf():
    table = _table(
        "bad_orders",
        ["order_id", "product_id", "product_name", "customer_name"],
        ["order_id", "product_id"],
        fds=[(["product_id"], ["product_name"]), (["order_id"], ["customer_name"])],
    )
    proposals = NormalFormChecker(table).check().proposals

    assert len(proposals) == 2
    assert all(p.kind is ViolationKind.TWO_NF for p in proposals)
    by_key = {p.key: p for p in proposals}
    assert by_key[("product_id",)].columns == ["product_name"]
    assert by_key[("product_id",)].new_table == "bad_orders_product_id"
    assert by_key[("order_id",)].columns == ["customer_name"]


def test_proposal_builder_3nf():
    table = _table(
        "bad_customers",
        ["customer_id", "customer_name", "city", "zipcode"],
        ["customer_id"],
        fds=[(["zipcode"], ["city"])],
    )
    proposals = NormalFormChecker(table).check().proposals

    assert len(proposals) == 1
    p = proposals[0]
    assert p.kind is ViolationKind.THREE_NF
    assert p.key == ("zipcode",)
    assert p.columns == ["city"]
    assert "foreign key" in p.notes[0]


def test_proposal_builder_1nf_child_table():
    table = _table("bad_contacts", ["contact_id", "name", "phones"], ["contact_id"], multivalued=["phones"])
    proposals = NormalFormChecker(table).check().proposals

    assert len(proposals) == 1
    p = proposals[0]
    assert p.kind is ViolationKind.ONE_NF
    assert p.new_table == "bad_contacts_phones"
    assert p.key == ("contact_id", "phones")


def test_heuristic_findings_get_no_proposal():
    table = _table("contacts", ["contact_id", "phones"], ["contact_id"])
    rows = [{"contact_id": 1, "phones": "555-1234, 555-9876"}]
    report = NormalFormChecker(table, rows).check()

    assert len(report.violations) == 1
    assert report.proposals == []


def test_dependents_sharing_a_determinant_are_grouped():
    table = _table("t", ["id", "zip", "city", "state"], ["id"], fds=[(["zip"], ["city", "state"])])
    violations = [
        Violation(ViolationKind.THREE_NF, "t", ("city",), "", key=("id",), determinant=("zip",)),
        Violation(ViolationKind.THREE_NF, "t", ("state",), "", key=("id",), determinant=("zip",)),
        Violation(ViolationKind.THREE_NF, "t", ("city",), "", key=("alt",), determinant=("zip",)),
    ]
    proposals = ProposalBuilder(table, table.candidate_keys, violations).build()

    assert len(proposals) == 1
    assert proposals[0].columns == ["city", "state"]
    assert proposals[0].to_dict()["kind"] == "3NF"
