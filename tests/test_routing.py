from finmon.routing import guarded, is_auth_page, is_protected, redirect_target


def test_protected_paths():
    assert is_protected("/dashboard")
    assert is_protected("/dashboard/expenses/add")
    assert not is_protected("/dashboards")
    assert not is_protected("/")


def test_auth_page():
    assert is_auth_page("/auth")
    assert is_auth_page("/auth/")
    assert not is_auth_page("/auth/callback")


def test_guarded():
    assert guarded("/dashboard/reports")
    assert guarded("/auth")
    assert not guarded("/auth/callback")
    assert not guarded("/api/status")


def test_redirect_table():
    assert redirect_target("/auth", True) == "/dashboard"
    assert redirect_target("/dashboard/x", False) == "/auth"
    assert redirect_target("/dashboard/x", True) is None
    assert redirect_target("/auth", False) is None
    assert redirect_target("/", False) is None
    assert redirect_target("/", True) is None


def test_redirect_is_idempotent():
    for path, has_session in [("/auth", True), ("/dashboard/x", False)]:
        target = redirect_target(path, has_session)
        assert redirect_target(target, has_session) is None
