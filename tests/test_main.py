from modules.job_tracker import main


def test_build_engine_seeds_sources(db_path, make_settings, stub_source):
    engine = main.build_engine(make_settings([stub_source("stub"), stub_source("linkedin", enabled=False)]))
    assert [s.id for s in engine.store.list_sources()] == ["linkedin", "stub"]
    assert [s.id for s in engine.store.enabled_sources()] == ["stub"]
    assert engine.registry.is_supported("uruguay-concursa")


def test_build_engine_keeps_toggled_flag(db_path, make_settings, stub_source):
    settings = make_settings([stub_source("stub")])
    main.build_engine(settings).store.set_source_enabled("stub", False)
    engine = main.build_engine(settings)
    assert engine.store.enabled_sources() == []
