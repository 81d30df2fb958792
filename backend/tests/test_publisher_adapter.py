from autoreply.models import ActivityType, ReviewStatus
from autoreply.services.error_recovery import STEP_POST, classify
from autoreply.services.publisher_adapter import PublicationAdapter

from conftest import RecordingSourceClient


async def test_publish_posts_and_records(store, seed, source, publisher):
    business_id = seed.business()
    review_id = seed.review(business_id, status=ReviewStatus.approved, ai_reply="Thanks Maria!")
    google_id = store.reviews[review_id].google_review_id

    result = await publisher.publish(review_id, "Thanks Maria!", business_id, "user-1")

    assert result.success and not result.already_published
    assert source.posts == [{
        "account_id": "accounts/123",
        "location_id": "locations/456",
        "external_review_id": google_id,
        "text": "Thanks Maria!",
    }]
    review = store.reviews[review_id]
    assert review.status == ReviewStatus.posted
    assert review.posted_reply == "Thanks Maria!"
    assert review.posted_at == result.posted_at
    assert store.activity_types(business_id) == [ActivityType.reply_auto_posted.value]


async def test_publishing_twice_is_a_no_op(store, seed, source, publisher):
    business_id = seed.business()
    review_id = seed.review(business_id, status=ReviewStatus.approved, ai_reply="Thanks Maria!")

    first = await publisher.publish(review_id, "Thanks Maria!", business_id)
    second = await publisher.publish(review_id, "Something else", business_id)

    assert second.success and second.already_published
    assert second.posted_at == first.posted_at
    assert second.reply_text == "Thanks Maria!"
    assert len(source.posts) == 1


async def test_manual_publication_activity(store, seed, publisher):
    business_id = seed.business()
    review_id = seed.review(business_id, status=ReviewStatus.approved, final_reply="Edited reply")

    result = await publisher.publish(review_id, None, business_id, automated=False)

    assert result.reply_text == "Edited reply"
    assert store.activity_types(business_id) == [ActivityType.reply_posted.value]


async def test_rejects_reviews_that_cannot_be_published(store, seed, source, publisher):
    business_id = seed.business()
    other_business = seed.business()
    no_text = seed.review(business_id, status=ReviewStatus.approved)
    no_external_id = seed.review(business_id, status=ReviewStatus.approved, ai_reply="Hi", google_review_id=None)
    foreign = seed.review(other_business, status=ReviewStatus.approved, ai_reply="Hi")

    assert (await publisher.publish("missing", "Hi", business_id)).error == "Review not found"
    assert (await publisher.publish(no_text, None, business_id)).error == "No reply text to publish"
    assert "external review id" in (await publisher.publish(no_external_id, None, business_id)).error
    assert "does not belong" in (await publisher.publish(foreign, None, business_id)).error
    assert source.posts == []


async def test_unconnected_business(store, seed, publisher):
    business_id = seed.business(connected=False)
    review_id = seed.review(business_id, status=ReviewStatus.approved, ai_reply="Hi")

    result = await publisher.publish(review_id, None, business_id)

    assert not result.success
    assert "not connected" in result.error


async def test_source_failure_leaves_review_approved(store, seed):
    business_id = seed.business()
    review_id = seed.review(business_id, status=ReviewStatus.approved, ai_reply="Hi")
    publisher = PublicationAdapter(store, RecordingSourceClient(error="Google API 503: Service Unavailable"), timeout=5)

    result = await publisher.publish(review_id, None, business_id)

    assert not result.success
    assert classify(STEP_POST, result.error).retryable
    assert store.reviews[review_id].status == ReviewStatus.approved
    assert store.reviews[review_id].posted_at is None
    assert store.activities == []


async def test_auth_failure_is_not_retryable(store, seed):
    business_id = seed.business()
    review_id = seed.review(business_id, status=ReviewStatus.approved, ai_reply="Hi")
    publisher = PublicationAdapter(
        store, RecordingSourceClient(error="Google authentication failed: invalid or expired credentials"), timeout=5
    )

    result = await publisher.publish(review_id, None, business_id)

    assert not result.success
    assert not classify(STEP_POST, result.error).retryable
