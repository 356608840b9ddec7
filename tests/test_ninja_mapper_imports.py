"""Test that all public exports are importable."""


def test_ninja_mapper_imports():
    import ninja_mapper

    assert ninja_mapper is not None


def test_public_api_exports():
    from ninja_mapper import (
        Adapter,
        ConnectionManager,
        ConnectionProfile,
        Entity,
        InMemoryAdapter,
        MongoAdapter,
        Query,
        Repository,
        RepositoryConfig,
        ResultSet,
        SQLAdapter,
        configure,
    )

    assert all(
        [
            Adapter,
            ConnectionManager,
            ConnectionProfile,
            Entity,
            InMemoryAdapter,
            MongoAdapter,
            Query,
            Repository,
            RepositoryConfig,
            ResultSet,
            SQLAdapter,
            configure,
        ]
    )


def test_all_lists_only_existing_names():
    import ninja_mapper

    missing = [name for name in ninja_mapper.__all__ if not hasattr(ninja_mapper, name)]
    assert missing == []
