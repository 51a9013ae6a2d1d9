from __future__ import annotations

from devdash.version_changes import environment_from_filename, is_versions_file, parse_version_changes


CHECKOUT_PATCH = """@@ -10,7 +10,7 @@ components:
   - name: checkout-service
-    version: '@fx-component/checkout-service-abc1234'
+    version: '@fx-component/checkout-service-def5678'
     endpoints:"""


def test_parses_single_component_bump():
    changes = parse_version_changes(CHECKOUT_PATCH, "mach-config/prd-prem-versions.yaml")

    assert len(changes) == 1
    c = changes[0]
    assert c.componentName == "checkout-service"
    assert c.componentPath == "components/checkout-service"
    assert c.fromVersion == "abc1234"
    assert c.toVersion == "def5678"
    assert c.environment == "prd-prem"
    assert c.changelog is None


def test_comment_only_patch_yields_nothing():
    patch = """@@ -1,3 +1,3 @@
-# pinned for the spring release
+# pinned for the summer release
 components:"""
    assert parse_version_changes(patch, "mach-config/acc-versions.yaml") == []


def test_removed_without_added_never_emits():
    patch = """   - name: cart
-    version: '@fx-component/cart-1234567'"""
    assert parse_version_changes(patch, "mach-config/acc-versions.yaml") == []


def test_multiple_components_emit_independently():
    patch = """   - name: cart
-    version: '@fx-component/cart-1111111'
+    version: '@fx-component/cart-2222222'
   - name: search
-    version: "@fx-component/search-aaaaaaa"
+    version: "@fx-component/search-bbbbbbbb"
"""
    changes = parse_version_changes(patch, "mach-config/tst-versions.yaml")

    assert [(c.componentName, c.fromVersion, c.toVersion) for c in changes] == [
        ("cart", "1111111", "2222222"),
        ("search", "aaaaaaa", "bbbbbbbb"),
    ]
    assert {c.environment for c in changes} == {"tst"}


def test_component_name_derived_from_version_when_no_name_line():
    patch = """-    version: '@fx-component/payment-gateway-abcdef0'
+    version: '@fx-component/payment-gateway-0fedcba'"""
    (change,) = parse_version_changes(patch, "mach-config/prd-versions.yaml")

    assert change.componentName == "payment-gateway"
    assert change.fromVersion == "abcdef0"
    assert change.toVersion == "0fedcba"


def test_name_persists_across_pairs():
    patch = """   - name: cart
-    version: '@fx-component/cart-1111111'
+    version: '@fx-component/cart-2222222'
-    version: '@fx-component/cart-3333333'
+    version: '@fx-component/cart-4444444'"""
    changes = parse_version_changes(patch, "mach-config/prd-versions.yaml")

    assert [c.componentName for c in changes] == ["cart", "cart"]
    assert [c.toVersion for c in changes] == ["2222222", "4444444"]


def test_short_hashes_are_ignored():
    patch = """   - name: cart
-    version: '@fx-component/cart-abc12'
+    version: '@fx-component/cart-def34'"""
    assert parse_version_changes(patch, "mach-config/prd-versions.yaml") == []


def test_none_patch_is_empty():
    assert parse_version_changes(None, "mach-config/prd-versions.yaml") == []


def test_environment_from_filename_handles_hyphens():
    assert environment_from_filename("mach-config/acc-test-versions.yaml") == "acc-test"
    assert environment_from_filename("mach-config/prd-prem-versions.yaml") == "prd-prem"
    assert environment_from_filename("deploy/x/uk-live-versions.yaml") == "uk-live"


def test_environment_unknown_when_name_does_not_match():
    assert environment_from_filename("mach-config/components.yaml") == "unknown"
    assert environment_from_filename("prd-versions.yaml") == "unknown"

    (change,) = parse_version_changes(CHECKOUT_PATCH, "README.md")
    assert change.environment == "unknown"


def test_is_versions_file():
    assert is_versions_file("mach-config/prd-versions.yaml")
    assert not is_versions_file("mach-config/prd.yaml")
    assert not is_versions_file("other/prd-versions.yaml")
    assert is_versions_file("deploy/acc-versions.yaml", "deploy")
