import unittest

from lxml import etree

from bookworm.errors import ContentParseError, MalformedContainer, MissingAttribute
from bookworm.opf import (
    ensure_cover_image_property,
    has_kobo_markers,
    opf_path_from_container_xml,
    parse_ncx,
    parse_opf,
    serialize_opf,
    set_kepub_marker,
)

from epub_fixtures import CONTAINER_XML, opf_xml

MANIFEST = (
    "<item id=\"c1\" href=\"Text/ch1.xhtml\" media-type=\"application/xhtml+xml\"/>"
    "<item id=\"c2\" href=\"Text/ch2.xhtml\" media-type=\"application/xhtml+xml\"/>"
    "<item id=\"c3\" href=\"Text/ch%203.xhtml\" media-type=\"Application/XHTML+XML\"/>"
    "<item id=\"img\" href=\"Images/front.jpg\" media-type=\"image/jpeg\"/>"
)
SPINE = "<itemref idref=\"c3\"/><itemref idref=\"c1\"/><itemref idref=\"c2\" linear=\"no\"/>"


class ParseOpfTests(unittest.TestCase):
    def test_manifest_spine_and_metadata(self) -> None:
        package = parse_opf(opf_xml(manifest=MANIFEST, spine=SPINE).encode("utf-8"), "OEBPS/content.opf")
        self.assertEqual([entry.id for entry in package.manifest], ["c1", "c2", "c3", "img"])
        self.assertEqual(package.manifest[0].path, "OEBPS/Text/ch1.xhtml")
        self.assertEqual(package.manifest[2].path, "OEBPS/Text/ch 3.xhtml")
        self.assertEqual(package.manifest[2].media_type, "application/xhtml+xml")
        self.assertEqual(package.spine, ["c3", "c1", "c2"])
        self.assertEqual(package.metadata.title, "The Test Book")
        self.assertEqual(package.metadata.authors, ["Ada Writer"])
        self.assertEqual(package.metadata.language, "en")
        self.assertEqual(package.metadata.identifier, "urn:uuid:0b7c3f2e-4a53-4a8e-9a57-9c1d1e2f3a4b")
        self.assertEqual(package.version, "3.0")

    def test_missing_manifest_attributes(self) -> None:
        for item in (
            "<item href=\"a.xhtml\" media-type=\"application/xhtml+xml\"/>",
            "<item id=\"a\" media-type=\"application/xhtml+xml\"/>",
            "<item id=\"a\" href=\"a.xhtml\"/>",
            "<item id=\"a\" href=\"a.xhtml\" media-type=\"  \"/>",
        ):
            with self.subTest(item=item):
                with self.assertRaises(MissingAttribute):
                    parse_opf(opf_xml(manifest=item, spine="").encode("utf-8"))

    def test_missing_idref(self) -> None:
        with self.assertRaises(MissingAttribute) as ctx:
            parse_opf(opf_xml(manifest=MANIFEST, spine="<itemref linear=\"yes\"/>").encode("utf-8"))
        self.assertEqual(ctx.exception.attribute, "idref")

    def test_absent_identifier_is_none_not_empty(self) -> None:
        metadata = "<dc:title>Untitled Draft</dc:title>"
        package = parse_opf(opf_xml(metadata=metadata, manifest=MANIFEST, spine=SPINE).encode("utf-8"))
        self.assertIsNone(package.metadata.identifier)
        self.assertIsNone(package.metadata.language)
        self.assertEqual(package.metadata.authors, [])

    def test_empty_identifier_is_empty_string(self) -> None:
        metadata = "<dc:identifier id=\"BookId\"></dc:identifier><dc:title/>"
        package = parse_opf(opf_xml(metadata=metadata, manifest=MANIFEST, spine=SPINE).encode("utf-8"))
        self.assertEqual(package.metadata.identifier, "")
        self.assertEqual(package.metadata.title, "")

    def test_creators_keep_order_and_unique_identifier_wins(self) -> None:
        metadata = (
            "<dc:identifier id=\"isbn\">9780000000002</dc:identifier>"
            "<dc:identifier id=\"BookId\">urn:uuid:abc</dc:identifier>"
            "<dc:creator>Second Author</dc:creator>"
            "<dc:creator>First Author</dc:creator>"
            "<dc:creator>Third Author</dc:creator>"
        )
        package = parse_opf(opf_xml(metadata=metadata, manifest=MANIFEST, spine=SPINE).encode("utf-8"))
        self.assertEqual(package.metadata.authors, ["Second Author", "First Author", "Third Author"])
        self.assertEqual(package.metadata.identifier, "urn:uuid:abc")

    def test_cover_resolution(self) -> None:
        by_meta = parse_opf(
            opf_xml(
                manifest=MANIFEST,
                spine=SPINE,
                extra_metadata="<meta name=\"cover\" content=\"img\"/>",
            ).encode("utf-8"),
            "OEBPS/content.opf",
        )
        self.assertEqual(by_meta.metadata.cover_resource, "OEBPS/Images/front.jpg")

        manifest = MANIFEST.replace("media-type=\"image/jpeg\"", "media-type=\"image/jpeg\" properties=\"cover-image\"")
        by_property = parse_opf(opf_xml(manifest=manifest, spine=SPINE).encode("utf-8"), "OEBPS/content.opf")
        self.assertEqual(by_property.metadata.cover_resource, "OEBPS/Images/front.jpg")

        without = parse_opf(opf_xml(manifest=MANIFEST, spine=SPINE).encode("utf-8"))
        self.assertIsNone(without.metadata.cover_resource)

    def test_cover_guess_matches_whole_name_tokens(self) -> None:
        lookalike = MANIFEST + "<item id=\"img2\" href=\"Images/discover.png\" media-type=\"image/png\"/>"
        package = parse_opf(opf_xml(manifest=lookalike, spine=SPINE).encode("utf-8"))
        self.assertIsNone(package.metadata.cover_resource)

        named = lookalike + "<item id=\"img3\" href=\"Images/book-cover.jpg\" media-type=\"image/jpeg\"/>"
        package = parse_opf(opf_xml(manifest=named, spine=SPINE).encode("utf-8"))
        self.assertEqual(package.metadata.cover_resource, "Images/book-cover.jpg")

        by_id = lookalike + "<item id=\"cover_art\" href=\"Images/art.jpg\" media-type=\"image/jpeg\"/>"
        package = parse_opf(opf_xml(manifest=by_id, spine=SPINE).encode("utf-8"))
        self.assertEqual(package.metadata.cover_resource, "Images/art.jpg")

    def test_href_escaping_the_root_is_malformed(self) -> None:
        manifest = "<item id=\"x\" href=\"../../etc/passwd\" media-type=\"text/plain\"/>"
        with self.assertRaises(MalformedContainer):
            parse_opf(opf_xml(manifest=manifest, spine="").encode("utf-8"), "OEBPS/content.opf")

    def test_not_well_formed(self) -> None:
        with self.assertRaises(ContentParseError) as ctx:
            parse_opf(b"<package><manifest></package>", "OEBPS/content.opf")
        self.assertEqual(ctx.exception.path, "OEBPS/content.opf")
        self.assertIsNotNone(ctx.exception.line)

    def test_extension_elements_round_trip(self) -> None:
        extra = (
            "<meta property=\"ibooks:version\">1.2</meta>"
            "<calibre:series xmlns:calibre=\"http://calibre.kovidgoyal.net/2009/metadata\" calibre:index=\"2\">Saga</calibre:series>"
        )
        raw = opf_xml(manifest=MANIFEST, spine=SPINE, extra_metadata=extra).encode("utf-8")
        package = parse_opf(raw)
        output = serialize_opf(package.root)
        reparsed = etree.fromstring(output)
        series = reparsed.find(".//{http://calibre.kovidgoyal.net/2009/metadata}series")
        self.assertIsNotNone(series)
        self.assertEqual(series.text, "Saga")
        self.assertEqual(series.get("{http://calibre.kovidgoyal.net/2009/metadata}index"), "2")
        self.assertIn(b"ibooks:version", output)
        self.assertEqual(parse_opf(output).spine, ["c3", "c1", "c2"])


class KepubMarkerTests(unittest.TestCase):
    def test_marker_toggles(self) -> None:
        package = parse_opf(opf_xml(manifest=MANIFEST, spine=SPINE).encode("utf-8"))
        self.assertFalse(has_kobo_markers(package.root))
        set_kepub_marker(package.root, True)
        set_kepub_marker(package.root, True)
        self.assertTrue(has_kobo_markers(package.root))
        self.assertEqual(serialize_opf(package.root).count(b"kobo:kepub"), 1)
        set_kepub_marker(package.root, False)
        self.assertFalse(has_kobo_markers(package.root))

    def test_cover_image_property_only_for_epub3(self) -> None:
        raw = opf_xml(manifest=MANIFEST, spine=SPINE).encode("utf-8")
        package = parse_opf(raw, "OEBPS/content.opf")
        self.assertTrue(ensure_cover_image_property(package.root, "OEBPS/content.opf", "OEBPS/Images/front.jpg"))
        self.assertFalse(ensure_cover_image_property(package.root, "OEBPS/content.opf", "OEBPS/Images/front.jpg"))
        self.assertIn(b'properties="cover-image"', serialize_opf(package.root))

        legacy = parse_opf(opf_xml(manifest=MANIFEST, spine=SPINE, version="2.0").encode("utf-8"), "OEBPS/content.opf")
        self.assertFalse(ensure_cover_image_property(legacy.root, "OEBPS/content.opf", "OEBPS/Images/front.jpg"))


class ContainerXmlTests(unittest.TestCase):
    def test_rootfile_full_path(self) -> None:
        names = {"OEBPS/content.opf", "mimetype"}
        self.assertEqual(opf_path_from_container_xml(CONTAINER_XML.encode("utf-8"), names), "OEBPS/content.opf")

    def test_fallbacks(self) -> None:
        self.assertEqual(opf_path_from_container_xml(None, {"OPS/content.opf"}), "OPS/content.opf")
        self.assertEqual(opf_path_from_container_xml(b"<container/>", {"content.opf"}), "content.opf")
        self.assertEqual(opf_path_from_container_xml(None, {"book/9781718500457.opf"}), "book/9781718500457.opf")
        with self.assertRaises(MalformedContainer):
            opf_path_from_container_xml(None, {"a.opf", "b.opf"})


class NcxTests(unittest.TestCase):
    def test_uid_and_doc_title(self) -> None:
        ncx = (
            b"<?xml version=\"1.0\" encoding=\"utf-8\"?>"
            b"<ncx xmlns=\"http://www.daisy.org/z3986/2005/ncx/\" version=\"2005-1\">"
            b"<head><meta name=\"dtb:uid\" content=\"urn:uuid:1234\"/><meta name=\"dtb:depth\" content=\"1\"/></head>"
            b"<docTitle><text>Navigation Title</text></docTitle><navMap/></ncx>"
        )
        toc = parse_ncx(ncx)
        self.assertEqual(toc.uid, "urn:uuid:1234")
        self.assertEqual(toc.doc_title, "Navigation Title")

    def test_garbage_yields_empty_info(self) -> None:
        toc = parse_ncx(b"this is not an ncx document")
        self.assertIsNone(toc.uid)
        self.assertIsNone(toc.doc_title)


if __name__ == "__main__":
    unittest.main()
