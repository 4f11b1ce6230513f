"""Behaviour every Repository implementation must share.

Each test runs once per backend (in-memory and SQLAlchemy on SQLite) through
the parametrized ``repository`` fixture.
"""

import pytest

from conduit.domain.entities import Article, CommentedArticle, Fanboy, ListCriteria, User
from conduit.domain.entities.comment import utcnow
from conduit.domain.exceptions import (
    ArticleNotFoundError,
    DuplicateArticleError,
    DuplicateUserError,
    InvalidFieldError,
    NoAuthorError,
    UserNotFoundError,
)

from conftest import TEST_PASSWORD, TEST_ROUNDS, build_article, build_author, build_user


def _set(**changes):
    """User transform that assigns the given attributes."""

    def apply(user: User) -> User:
        for name, value in changes.items():
            setattr(user, name, value)
        return user

    return apply


def _retitle(title: str):
    def apply(article: Article) -> Article:
        article.set_title(title)
        return article

    return apply


def _comment(body: str, author_email: str):
    def apply(article: CommentedArticle) -> CommentedArticle:
        article.add_comment(body, author_email)
        return article

    return apply


# ── Users ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_user_returns_stored_user(repository):
    faithful = build_user("faithful")
    created = await repository.create_user(faithful)
    assert created == faithful

    kindhearted = build_user("kindhearted")
    assert await repository.create_user(kindhearted) == kindhearted


@pytest.mark.asyncio
async def test_create_user_rejects_duplicate_email_or_username(repository):
    await repository.create_user(build_user("faithful"))
    await repository.create_user(build_user("kindhearted"))

    same_email = build_user("faithful")
    same_email.username = "icy username"
    with pytest.raises(DuplicateUserError) as exc_info:
        await repository.create_user(same_email)
    assert exc_info.value.field == "email"

    same_username = build_user("kindhearted")
    same_username.email = "user@icy.com"
    with pytest.raises(DuplicateUserError) as exc_info:
        await repository.create_user(same_username)
    assert exc_info.value.field == "username"

    shouting = build_user("whisper")
    shouting.email = "USER@Faithful.com"
    with pytest.raises(DuplicateUserError):
        await repository.create_user(shouting)

    for username in ("icy username", "whisper username"):
        with pytest.raises(UserNotFoundError):
            await repository.get_user_by_username(username)
    with pytest.raises(UserNotFoundError):
        await repository.get_user_by_email("user@icy.com")
    assert (await repository.get_user_by_email("user@faithful.com")).username == "faithful username"
    assert (await repository.get_user_by_username("kindhearted username")).email == "user@kindhearted.com"


@pytest.mark.asyncio
async def test_create_user_validates_the_user(repository):
    invalid = build_user("grumpy")
    invalid.email = "not an email"
    with pytest.raises(InvalidFieldError):
        await repository.create_user(invalid)

    with pytest.raises(UserNotFoundError):
        await repository.get_user_by_username("grumpy username")


@pytest.mark.asyncio
async def test_update_user_by_email_changes_profile_and_password(repository):
    await repository.create_user(build_user("faithful"))

    def apply(user: User) -> User:
        user.bio = "noisy bio"
        user.image = "http://noisy.com/profile.png"
        user.set_password("!4321tseT", rounds=TEST_ROUNDS)
        return user

    updated = await repository.update_user_by_email("user@faithful.com", apply)
    assert updated.bio == "noisy bio"

    found = await repository.get_user_by_email("user@faithful.com")
    assert found.bio == "noisy bio"
    assert found.image == "http://noisy.com/profile.png"
    assert found.has_password("!4321tseT")
    assert not found.has_password(TEST_PASSWORD)


@pytest.mark.asyncio
async def test_get_user_by_email(repository):
    finicky = build_user("finicky")
    await repository.create_user(finicky)

    found = await repository.get_user_by_email("user@finicky.com")
    assert isinstance(found, Fanboy)
    assert found.as_user() == finicky
    assert (await repository.get_user_by_email("USER@FINICKY.COM")).username == "finicky username"

    with pytest.raises(UserNotFoundError):
        await repository.get_user_by_email("user@light.com")
    with pytest.raises(UserNotFoundError):
        await repository.get_user_by_email("")


@pytest.mark.asyncio
async def test_email_change_moves_the_user(repository):
    await repository.create_user(build_user("finicky"))
    await repository.create_user(build_user("snobbish"))

    await repository.update_user_by_email("user@finicky.com", _set(email="user@nutty.com"))
    assert (await repository.get_user_by_email("user@nutty.com")).username == "finicky username"
    with pytest.raises(UserNotFoundError):
        await repository.get_user_by_email("user@finicky.com")

    with pytest.raises(DuplicateUserError):
        await repository.update_user_by_email("user@nutty.com", _set(email="user@snobbish.com"))
    assert (await repository.get_user_by_email("user@nutty.com")).username == "finicky username"
    assert (await repository.get_user_by_email("user@snobbish.com")).username == "snobbish username"


@pytest.mark.asyncio
async def test_get_user_by_username(repository):
    stormy = build_user("stormy")
    await repository.create_user(stormy)
    await repository.create_user(build_user("dusty"))

    assert await repository.get_user_by_username("stormy username") == stormy
    assert (await repository.get_user_by_username("Stormy Username")).email == "user@stormy.com"
    with pytest.raises(UserNotFoundError):
        await repository.get_user_by_username("dashing username")

    await repository.update_user_by_email("user@stormy.com", _set(username="thirsty username"))
    assert (await repository.get_user_by_username("thirsty username")).email == "user@stormy.com"

    with pytest.raises(DuplicateUserError):
        await repository.update_user_by_email("user@stormy.com", _set(username="dusty username"))
    assert (await repository.get_user_by_username("thirsty username")).email == "user@stormy.com"


@pytest.mark.asyncio
async def test_failed_user_transform_leaves_user_unchanged(repository):
    await repository.create_user(build_user("brittle"))

    def explode(user: User) -> User:
        user.bio = "half written"
        raise RuntimeError("transform failed")

    with pytest.raises(RuntimeError):
        await repository.update_user_by_email("user@brittle.com", explode)

    with pytest.raises(InvalidFieldError):
        await repository.update_user_by_email("user@brittle.com", _set(image="not a url"))

    found = await repository.get_user_by_email("user@brittle.com")
    assert found.bio == "brittle bio"
    assert found.image == "http://brittle.com/profile.png"


@pytest.mark.asyncio
async def test_update_unknown_user_raises(repository):
    with pytest.raises(UserNotFoundError):
        await repository.update_user_by_email("user@ghost.com", _set(bio="boo"))
    with pytest.raises(UserNotFoundError):
        await repository.update_fanboy_by_email("user@ghost.com", lambda fanboy: fanboy)


@pytest.mark.asyncio
async def test_update_fanboy_following(repository):
    await repository.create_user(build_user("gifted"))
    assert (await repository.get_user_by_email("user@gifted.com")).following_emails() == []
    for adj in ("important", "lumpy", "remarkable", "valuable"):
        await repository.create_user(build_user(adj))

    def follow_two(fanboy: Fanboy) -> Fanboy:
        fanboy.start_following("user@lumpy.com")
        fanboy.start_following("user@remarkable.com")
        return fanboy

    assert await repository.update_fanboy_by_email("user@gifted.com", follow_two) is None

    gifted = await repository.get_user_by_email("user@gifted.com")
    assert len(gifted.following_emails()) == 2
    assert gifted.is_following("user@lumpy.com")
    assert not gifted.is_following("user@valuable.com")

    await repository.update_user_by_email("user@remarkable.com", _set(email="user@best.com"))
    gifted = await repository.get_user_by_email("user@gifted.com")
    assert gifted.is_following("user@best.com")
    assert not gifted.is_following("user@remarkable.com")

    def reshuffle(fanboy: Fanboy) -> Fanboy:
        fanboy.stop_following("user@best.com")
        fanboy.start_following("user@important.com")
        fanboy.start_following("user@valuable.com")
        fanboy.start_following("not an email")
        return fanboy

    await repository.update_fanboy_by_email("user@gifted.com", reshuffle)
    gifted = await repository.get_user_by_email("user@gifted.com")
    assert gifted.following_emails() == ["user@important.com", "user@lumpy.com", "user@valuable.com"]
    assert not gifted.is_following("user@best.com")
    assert not gifted.is_following("not an email")


@pytest.mark.asyncio
async def test_update_fanboy_ignores_unknown_users_and_articles(repository):
    await repository.create_user(build_user("lonely"))

    def reach_out(fanboy: Fanboy) -> Fanboy:
        fanboy.start_following("user@nobody.com")
        fanboy.favorite("missing-title")
        return fanboy

    await repository.update_fanboy_by_email("user@lonely.com", reach_out)
    lonely = await repository.get_user_by_email("user@lonely.com")
    assert lonely.following_emails() == []
    assert lonely.favorited_slugs() == []


@pytest.mark.asyncio
async def test_update_fanboy_favorites(repository):
    await repository.create_user(build_user("luxuriant"))
    assert (await repository.get_user_by_email("user@luxuriant.com")).favorited_slugs() == []

    await repository.create_user(build_author("brainy"))
    for adj in ("callous", "aware", "magnificient"):
        article = build_article(adj)
        article.author_email = "author@brainy.com"
        await repository.create_article(article)

    def favorite_two(fanboy: Fanboy) -> Fanboy:
        fanboy.favorite("callous-title")
        fanboy.favorite("aware-title")
        return fanboy

    await repository.update_fanboy_by_email("user@luxuriant.com", favorite_two)
    luxuriant = await repository.get_user_by_email("user@luxuriant.com")
    assert len(luxuriant.favorited_slugs()) == 2
    assert luxuriant.favors("callous-title")
    assert not luxuriant.favors("magnificient-title")

    callous = await repository.get_article_by_slug("callous-title")
    assert callous.favorite_count == 1
    assert callous.is_favorited_by("user@luxuriant.com")

    await repository.create_user(build_user("careful"))

    def favorite_callous(fanboy: Fanboy) -> Fanboy:
        fanboy.favorite("callous-title")
        return fanboy

    await repository.update_fanboy_by_email("user@careful.com", favorite_callous)
    assert (await repository.get_article_by_slug("callous-title")).favorite_count == 2

    await repository.update_article_by_slug("callous-title", _retitle("careful-title"))
    luxuriant = await repository.get_user_by_email("user@luxuriant.com")
    assert luxuriant.favors("careful-title")
    assert not luxuriant.favors("callous-title")

    def shuffle(fanboy: Fanboy) -> Fanboy:
        fanboy.unfavorite("aware-title")
        fanboy.favorite("magnificient-title")
        fanboy.favorite("magnificient-title")
        return fanboy

    await repository.update_fanboy_by_email("user@luxuriant.com", shuffle)
    luxuriant = await repository.get_user_by_email("user@luxuriant.com")
    assert luxuriant.favorited_slugs() == ["careful-title", "magnificient-title"]
    assert not luxuriant.favors("aware-title")


# ── Articles ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_article(repository):
    article = build_article("hospitable")
    with pytest.raises(NoAuthorError):
        await repository.create_article(article)

    author = build_author("hospitable")
    await repository.create_user(author)
    before = utcnow()
    created = await repository.create_article(build_article("hospitable"))

    assert created.slug == "hospitable-title"
    assert created.title == "hospitable title"
    assert created.description == "hospitable description"
    assert created.body == "hospitable body"
    assert created.tag_list == ["hospitable one", "hospitable two", "hospitable three"]
    assert created.author_email == "author@hospitable.com"
    assert created.author == author
    assert created.favorite_count == 0
    assert created.created_at >= before
    assert created.updated_at == created.created_at

    with pytest.raises(DuplicateArticleError):
        await repository.create_article(build_article("hospitable"))


@pytest.mark.asyncio
async def test_article_follows_author_email_change(repository):
    await repository.create_user(build_author("hospitable"))
    await repository.create_article(build_article("hospitable"))

    await repository.update_user_by_email("author@hospitable.com", _set(email="author@whole.com"))

    found = await repository.get_article_by_slug("hospitable-title")
    assert found.author_email == "author@whole.com"
    assert found.author.email == "author@whole.com"


@pytest.mark.asyncio
async def test_get_article_by_slug(repository):
    await repository.create_user(build_author("observant"))
    await repository.create_article(build_article("observant"))

    found = await repository.get_article_by_slug("observant-title")
    assert found.title == "observant title"
    assert found.author.email == "author@observant.com"
    assert (await repository.get_article_by_slug("Observant-Title")).slug == "observant-title"

    with pytest.raises(ArticleNotFoundError):
        await repository.get_article_by_slug("silent-title")
    with pytest.raises(ArticleNotFoundError):
        await repository.get_article_by_slug("")


@pytest.mark.asyncio
async def test_retitling_an_article_moves_its_slug(repository):
    await repository.create_user(build_author("observant"))
    await repository.create_article(build_article("observant"))
    modern = build_article("modern")
    modern.author_email = "author@observant.com"
    await repository.create_article(modern)

    renamed = await repository.update_article_by_slug("observant-title", _retitle("silent title"))
    assert renamed.slug == "silent-title"
    assert (await repository.get_article_by_slug("silent-title")).body == "observant body"
    with pytest.raises(ArticleNotFoundError):
        await repository.get_article_by_slug("observant-title")

    with pytest.raises(DuplicateArticleError):
        await repository.update_article_by_slug("silent-title", _retitle("modern title"))
    assert (await repository.get_article_by_slug("silent-title")).title == "silent title"
    assert (await repository.get_article_by_slug("modern-title")).body == "modern body"


@pytest.mark.asyncio
async def test_update_article_advances_updated_at(repository):
    await repository.create_user(build_author("steady"))
    created = await repository.create_article(build_article("steady"))

    def rewrite(article: Article) -> Article:
        article.body = "steadier body"
        return article

    updated = await repository.update_article_by_slug("steady-title", rewrite)
    assert updated.body == "steadier body"
    assert updated.created_at == created.created_at
    assert updated.updated_at > created.updated_at

    again = await repository.update_article_by_slug("steady-title", rewrite)
    assert again.updated_at > updated.updated_at


@pytest.mark.asyncio
async def test_failed_article_update_leaves_article_unchanged(repository):
    await repository.create_user(build_author("stubborn"))
    await repository.create_article(build_article("stubborn"))

    def orphan(article: Article) -> Article:
        article.author_email = "author@nowhere.com"
        return article

    with pytest.raises(NoAuthorError):
        await repository.update_article_by_slug("stubborn-title", orphan)

    def explode(article: Article) -> Article:
        article.set_title("exploded title")
        raise RuntimeError("transform failed")

    with pytest.raises(RuntimeError):
        await repository.update_article_by_slug("stubborn-title", explode)

    found = await repository.get_article_by_slug("stubborn-title")
    assert found.author_email == "author@stubborn.com"
    with pytest.raises(ArticleNotFoundError):
        await repository.get_article_by_slug("exploded-title")

    with pytest.raises(ArticleNotFoundError):
        await repository.update_article_by_slug("missing-title", _retitle("whatever"))


@pytest.mark.asyncio
async def test_favoriting_through_an_article_updates_the_user(repository):
    await repository.create_user(build_author("generous"))
    await repository.create_user(build_user("grateful"))
    await repository.create_article(build_article("generous"))

    def favorite(article: Article) -> Article:
        article.favorite("user@grateful.com")
        return article

    favored = await repository.update_article_by_slug("generous-title", favorite)
    assert favored.favorite_count == 1
    assert (await repository.get_user_by_email("user@grateful.com")).favors("generous-title")

    def unfavorite(article: Article) -> Article:
        article.unfavorite("user@grateful.com")
        return article

    plain = await repository.update_article_by_slug("generous-title", unfavorite)
    assert plain.favorite_count == 0
    assert not (await repository.get_user_by_email("user@grateful.com")).favors("generous-title")


@pytest.mark.asyncio
async def test_delete_article(repository):
    await repository.create_user(build_author("deranged"))
    await repository.create_user(build_user("fond"))
    deranged = await repository.create_article(build_article("deranged"))

    def favorite(fanboy: Fanboy) -> Fanboy:
        fanboy.favorite("deranged-title")
        return fanboy

    await repository.update_fanboy_by_email("user@fond.com", favorite)
    await repository.update_comments_by_slug("deranged-title", _comment("so deranged", "user@fond.com"))

    await repository.delete_article(deranged)
    with pytest.raises(ArticleNotFoundError):
        await repository.get_article_by_slug("deranged-title")
    with pytest.raises(ArticleNotFoundError):
        await repository.get_comments_by_slug("deranged-title")
    assert not (await repository.get_user_by_email("user@fond.com")).favors("deranged-title")

    await repository.delete_article(deranged)
    with pytest.raises(ArticleNotFoundError):
        await repository.get_article_by_slug("deranged-title")


@pytest.mark.asyncio
async def test_latest_articles_by_criteria(repository):
    tag = "Articles_LatestArticlesByCriteria"
    authors = [build_author("frail"), build_author("simple"), build_author("reminiscent")]
    for author in authors:
        await repository.create_user(author)

    source = {}
    adjectives = [
        "bright", "colorful", "sour", "fantastic", "mellow", "splendid", "gruesome",
        "madly", "kind", "organic", "public", "flagrant", "waggish",
    ]
    for i, adj in enumerate(adjectives):
        article = build_article(adj, tag)
        article.author_email = authors[i % 3].email
        await repository.create_article(article)
        source[article.slug] = await repository.get_article_by_slug(article.slug)

    everything = await repository.latest_articles_by_criteria(ListCriteria(tag=tag, limit=13))
    assert sorted(a.slug for a in everything) == sorted(source)
    for article in everything:
        assert article == source[article.slug]
    assert [a.slug for a in everything] == [f"{adj}-title" for adj in reversed(adjectives)]

    some = await repository.latest_articles_by_criteria(ListCriteria(tag=tag, offset=2, limit=5))
    assert len(some) == 5
    assert some[0].slug == "public-title"
    assert some[4].slug == "gruesome-title"

    authored = await repository.latest_articles_by_criteria(
        ListCriteria(tag=tag, limit=13, author_emails=["author@frail.com", "author@simple.com"])
    )
    assert len(authored) == 9
    assert all(a.author_email != "author@reminiscent.com" for a in authored)

    shouted = await repository.latest_articles_by_criteria(ListCriteria(tag=tag.upper(), limit=None))
    assert len(shouted) == 13

    by_own_tag = await repository.latest_articles_by_criteria(ListCriteria(tag="kind two"))
    assert [a.slug for a in by_own_tag] == ["kind-title"]

    assert await repository.latest_articles_by_criteria(ListCriteria(tag=tag, offset=20)) == []
    assert await repository.latest_articles_by_criteria(ListCriteria(tag=tag, limit=0)) == []


@pytest.mark.asyncio
async def test_latest_articles_favorited_by(repository):
    await repository.create_user(build_author("busy"))
    await repository.create_user(build_user("picky"))
    for adj in ("first", "second", "third"):
        article = build_article(adj)
        article.author_email = "author@busy.com"
        await repository.create_article(article)

    def favorite(fanboy: Fanboy) -> Fanboy:
        fanboy.favorite("first-title")
        fanboy.favorite("third-title")
        return fanboy

    await repository.update_fanboy_by_email("user@picky.com", favorite)

    favored = await repository.latest_articles_by_criteria(
        ListCriteria(favorited_by_user_email="user@picky.com")
    )
    assert [a.slug for a in favored] == ["third-title", "first-title"]

    with pytest.raises(UserNotFoundError):
        await repository.latest_articles_by_criteria(
            ListCriteria(favorited_by_user_email="user@nobody.com")
        )


@pytest.mark.asyncio
async def test_update_comments_by_slug(repository):
    await repository.create_user(build_user("simplistic"))
    await repository.create_user(build_author("envious"))
    for adj in ("tedious", "polite", "divergent"):
        article = build_article(adj)
        article.author_email = "author@envious.com"
        await repository.create_article(article)

    before = utcnow()
    first = await repository.update_comments_by_slug(
        "tedious-title", _comment("enchanting body", "user@simplistic.com")
    )
    assert first.id == 1
    assert first.body == "enchanting body"
    assert first.author_email == "user@simplistic.com"
    assert first.created_at >= before

    second = await repository.update_comments_by_slug(
        "tedious-title", _comment("quirky body", "user@simplistic.com")
    )
    assert second.id == 2
    assert len((await repository.get_comments_by_slug("tedious-title")).comments) == 2
    assert (await repository.get_comments_by_slug("polite-title")).comments == []

    def remove_first(article: CommentedArticle) -> CommentedArticle:
        article.remove_comment(first.id)
        return article

    assert await repository.update_comments_by_slug("tedious-title", remove_first) is None

    remaining = (await repository.get_comments_by_slug("tedious-title")).comments
    assert len(remaining) == 1
    assert remaining[0].id == 2
    assert remaining[0].body == "quirky body"
    assert remaining[0].author_email == "user@simplistic.com"
    assert remaining[0].created_at >= before

    third = await repository.update_comments_by_slug(
        "tedious-title", _comment("third body", "user@simplistic.com")
    )
    assert third.id == 3


@pytest.mark.asyncio
async def test_update_comments_assigns_ids_in_order(repository):
    await repository.create_user(build_author("chatty"))
    await repository.create_article(build_article("chatty"))

    def add_three(article: CommentedArticle) -> CommentedArticle:
        for body in ("one", "two", "three"):
            article.add_comment(body, "author@chatty.com")
        return article

    assert await repository.update_comments_by_slug("chatty-title", add_three) is None
    comments = (await repository.get_comments_by_slug("chatty-title")).comments
    assert [(c.id, c.body) for c in comments] == [(1, "one"), (2, "two"), (3, "three")]


@pytest.mark.asyncio
async def test_update_comments_requires_known_author(repository):
    await repository.create_user(build_author("guarded"))
    await repository.create_article(build_article("guarded"))

    with pytest.raises(NoAuthorError):
        await repository.update_comments_by_slug(
            "guarded-title", _comment("who am i", "user@stranger.com")
        )
    assert (await repository.get_comments_by_slug("guarded-title")).comments == []

    with pytest.raises(ArticleNotFoundError):
        await repository.update_comments_by_slug(
            "missing-title", _comment("hello", "author@guarded.com")
        )


@pytest.mark.asyncio
async def test_comments_follow_author_email_change(repository):
    await repository.create_user(build_author("vocal"))
    await repository.create_article(build_article("vocal"))
    await repository.update_comments_by_slug("vocal-title", _comment("loud", "author@vocal.com"))

    await repository.update_user_by_email("author@vocal.com", _set(email="author@quiet.com"))

    comments = (await repository.get_comments_by_slug("vocal-title")).comments
    assert [c.author_email for c in comments] == ["author@quiet.com"]


@pytest.mark.asyncio
async def test_distinct_tags(repository):
    tag = "Articles_DistinctTags"
    await repository.create_user(build_author("threatening"))
    for adj in ("stimulating", "exultant", "helpless"):
        article = build_article(adj, tag)
        article.author_email = "author@threatening.com"
        await repository.create_article(article)

    tags = await repository.distinct_tags()
    assert "stimulating one" in tags
    assert "stimulating two" in tags
    assert "helpless three" in tags
    assert tags.count(tag) == 1
    assert len(tags) == 10


@pytest.mark.asyncio
async def test_distinct_tags_empty(repository):
    assert await repository.distinct_tags() == []


@pytest.mark.asyncio
async def test_delete_article_none_changes_nothing(repository):
    await repository.create_user(build_author("calm"))
    await repository.create_user(build_user("loyal"))
    await repository.create_article(build_article("calm"))

    def favorite(fanboy: Fanboy) -> Fanboy:
        fanboy.favorite("calm-title")
        return fanboy

    await repository.update_fanboy_by_email("user@loyal.com", favorite)
    await repository.update_comments_by_slug("calm-title", _comment("steady", "user@loyal.com"))

    await repository.delete_article(None)

    calm = await repository.get_article_by_slug("calm-title")
    assert calm.favorite_count == 1
    assert [c.body for c in (await repository.get_comments_by_slug("calm-title")).comments] == ["steady"]
    assert (await repository.get_user_by_email("user@loyal.com")).favorited_slugs() == ["calm-title"]
    assert [a.slug for a in await repository.latest_articles_by_criteria(ListCriteria())] == ["calm-title"]


@pytest.mark.asyncio
async def test_rejected_email_change_leaves_references_intact(repository):
    await repository.create_user(build_author("finicky"))
    await repository.create_user(build_user("snobbish"))
    await repository.create_user(build_user("devoted"))
    await repository.create_article(build_article("finicky"))
    await repository.update_comments_by_slug("finicky-title", _comment("mine", "author@finicky.com"))

    def follow(fanboy: Fanboy) -> Fanboy:
        fanboy.start_following("author@finicky.com")
        return fanboy

    await repository.update_fanboy_by_email("user@devoted.com", follow)

    with pytest.raises(DuplicateUserError):
        await repository.update_user_by_email("author@finicky.com", _set(email="user@snobbish.com"))

    def rename_then_fail(user: User) -> User:
        user.email = "author@elsewhere.com"
        raise RuntimeError("transform failed")

    with pytest.raises(RuntimeError):
        await repository.update_user_by_email("author@finicky.com", rename_then_fail)

    devoted = await repository.get_user_by_email("user@devoted.com")
    assert devoted.following_emails() == ["author@finicky.com"]
    article = await repository.get_article_by_slug("finicky-title")
    assert article.author_email == "author@finicky.com"
    assert article.author.email == "author@finicky.com"
    comments = (await repository.get_comments_by_slug("finicky-title")).comments
    assert [c.author_email for c in comments] == ["author@finicky.com"]
    with pytest.raises(UserNotFoundError):
        await repository.get_user_by_email("author@elsewhere.com")


@pytest.mark.asyncio
async def test_case_only_email_change_reaches_every_reference(repository):
    await repository.create_user(build_author("vocal"))
    await repository.create_user(build_user("listener"))
    await repository.create_article(build_article("vocal"))
    await repository.update_comments_by_slug("vocal-title", _comment("loud", "author@vocal.com"))

    def follow(fanboy: Fanboy) -> Fanboy:
        fanboy.start_following("author@vocal.com")
        return fanboy

    await repository.update_fanboy_by_email("user@listener.com", follow)

    await repository.update_user_by_email("author@vocal.com", _set(email="Author@Vocal.com"))

    assert (await repository.get_user_by_email("author@vocal.com")).email == "Author@Vocal.com"
    found = await repository.get_article_by_slug("vocal-title")
    assert found.author_email == "Author@Vocal.com"
    assert found.author.email == "Author@Vocal.com"
    listed = await repository.latest_articles_by_criteria(ListCriteria(author_emails=["author@vocal.com"]))
    assert [a.author_email for a in listed] == ["Author@Vocal.com"]
    comments = (await repository.get_comments_by_slug("vocal-title")).comments
    assert [c.author_email for c in comments] == ["Author@Vocal.com"]

    listener = await repository.get_user_by_email("user@listener.com")
    assert listener.is_following("Author@Vocal.com")
    assert listener.following_emails() == ["author@vocal.com"]


@pytest.mark.asyncio
async def test_ids_freed_in_the_same_update_are_not_reused(repository):
    await repository.create_user(build_author("thrifty"))
    await repository.create_article(build_article("thrifty"))
    for body in ("first", "second"):
        await repository.update_comments_by_slug("thrifty-title", _comment(body, "author@thrifty.com"))

    def add_then_drop_latest(article: CommentedArticle) -> CommentedArticle:
        article.add_comment("third", "author@thrifty.com")
        article.remove_comment(2)
        return article

    created = await repository.update_comments_by_slug("thrifty-title", add_then_drop_latest)

    assert created.id == 3
    comments = (await repository.get_comments_by_slug("thrifty-title")).comments
    assert [(c.id, c.body) for c in comments] == [(1, "first"), (3, "third")]
