from pytest_archon import archrule


def test_core_does_not_depend_on_sqlalchemy() -> None:
    """
    The verification core runs on any store adapter.
    Only the sqlalchemy subpackage may import SQLAlchemy.
    """
    (
        archrule("core_is_store_agnostic")
        .match("twofactor_core*")
        .exclude("twofactor_core.sqlalchemy*")
        .should_not_import("twofactor_core.sqlalchemy*")
        .should_not_import("sqlalchemy*")
        .check("twofactor_core")
    )


def test_value_layer_isolation() -> None:
    """
    Models, exceptions and configuration are the lowest level.
    They must not import services, adapters or third-party crypto.
    """
    for module in ("models", "exceptions", "config"):
        (
            archrule(f"value_layer_isolation_{module}")
            .match(f"twofactor_core.{module}")
            .should_not_import("twofactor_core.service")
            .should_not_import("twofactor_core.coordinator")
            .should_not_import("twofactor_core.memory")
            .should_not_import("pyotp*")
            .should_not_import("bcrypt*")
            .check("twofactor_core")
        )


def test_ports_layering() -> None:
    """
    Ports (interfaces) should not depend on Adapters (implementations).
    """
    (
        archrule("ports_layering")
        .match("twofactor_core.ports")
        .should_not_import("twofactor_core.memory")
        .should_not_import("twofactor_core.sqlalchemy*")
        .check("twofactor_core")
    )


def test_components_do_not_depend_on_facade() -> None:
    """
    The service facade wires the components; components never reach back into it.
    """
    (
        archrule("facade_on_top")
        .match("twofactor_core.*")
        .exclude("twofactor_core.service")
        .should_not_import("twofactor_core.service")
        .check("twofactor_core")
    )
