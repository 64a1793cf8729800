import pytest

from commentsync.core.stream_parser import ImageStreamParser

from fakes import block_image, encode


def _split(data: bytes, size: int):
    return [data[i:i + size] for i in range(0, len(data), size)]


@pytest.mark.parametrize("image_format", ["jpeg", "png"])
@pytest.mark.parametrize("chunk_size", [1, 2, 7, 4096, 10**6])
def test_records_survive_any_chunking(image_format, chunk_size):
    images = [encode(block_image(seed), image_format) for seed in range(5)]
    parser = ImageStreamParser.for_format(image_format)

    records = []
    for chunk in _split(b"".join(images), chunk_size):
        records.extend(parser.feed(chunk))

    assert records == images
    assert parser.records_emitted == 5


def test_end_marker_split_across_chunks():
    parser = ImageStreamParser(b"\xff\xd8", b"\xff\xd9")
    assert parser.feed(b"\xff\xd8abc\xff") == []
    assert parser.feed(b"\xd9\xff\xd8x") == [b"\xff\xd8abc\xff\xd9"]
    assert parser.feed(b"y\xff\xd9") == [b"\xff\xd8xy\xff\xd9"]


def test_leading_garbage_is_discarded():
    parser = ImageStreamParser(b"\xff\xd8", b"\xff\xd9")
    assert parser.feed(b"noise\xff\xd8img\xff\xd9") == [b"\xff\xd8img\xff\xd9"]
    assert parser.pending_bytes == 0


def test_consumed_bytes_are_released():
    image = encode(block_image(3))
    parser = ImageStreamParser.for_format("jpeg")
    for _ in range(50):
        parser.feed(image)
    assert parser.pending_bytes == 0
    parser.feed(image[:100])
    assert parser.pending_bytes == 100


def test_unknown_format_rejected():
    with pytest.raises(ValueError):
        ImageStreamParser.for_format("gif")
