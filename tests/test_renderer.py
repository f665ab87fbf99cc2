"""Tests for batch rendering."""

from conftest import Person

from stencil import BatchRenderer, BatchResult


class TestBatchRenderer:
    """Test rendering one template against many data values."""

    def test_sequential(self, make_set, people):
        """Test outputs come back in input order."""
        renderer = BatchRenderer(make_set("{{.Name}}"))
        result = renderer.render("root", people, parallel=False)

        assert isinstance(result, BatchResult)
        assert result.outputs == ["luna", "nina"]
        assert result.success_count == 2
        assert result.error_count == 0
        assert result.success_rate == 100.0
        assert result.metadata["parallel"] is False
        assert result.metadata["total_contexts"] == 2

    def test_parallel_preserves_order(self, make_set):
        """Test worker threads still yield outputs in input order."""
        renderer = BatchRenderer(
            make_set("{{.}}-"), batch_size=7, max_workers=3, parallel_threshold=10
        )
        contexts = list(range(50))
        result = renderer.render("root", contexts)

        assert result.metadata["parallel"] is True
        assert result.outputs == [f"{i}-" for i in contexts]

    def test_errors_are_collected(self, make_set):
        """Test a failing render leaves None and records the error."""
        renderer = BatchRenderer(make_set("{{index . 1}}"))
        result = renderer.render("root", [[0, 1], [0]], parallel=False)

        assert result.outputs == ["1", None]
        assert result.error_count == 1
        assert result.errors[0][0] == 1
        assert "index out of range" in result.errors[0][1]
        assert result.success_rate == 50.0

    def test_diagnostics_are_indexed(self, make_set):
        """Test soft diagnostics are tagged with their input position."""
        renderer = BatchRenderer(make_set("{{.Missing}}"))
        result = renderer.render("root", [{"Missing": 1}, {}], parallel=False)

        assert result.outputs == ["1", "<no value>"]
        assert result.diagnostics
        assert all(index == 1 for index, _ in result.diagnostics)

    def test_unknown_template(self, make_set):
        """Test an unknown name fails the whole batch up front."""
        renderer = BatchRenderer(make_set("x"))
        result = renderer.render("nope", [1, 2])

        assert result.metadata == {"lookup_failed": True}
        assert result.outputs == []
        assert "no template 'nope'" in result.errors[0][1]

    def test_progress_callback(self, make_set):
        """Test progress is reported for every render."""
        renderer = BatchRenderer(make_set("{{.}}"))
        progress = []
        renderer.render("root", list(range(25)), progress_callback=progress.append)
        assert sum(progress) == 25

    def test_methods_render_in_parallel(self, make_set):
        """Test method calls on records from worker threads."""
        renderer = BatchRenderer(
            make_set('{{.Greeting "Hi"}}'), batch_size=2, parallel_threshold=2
        )
        result = renderer.render("root", [Person("a", 1), Person("b", 2), Person("c", 3)])
        assert result.outputs == ["Hi, a", "Hi, b", "Hi, c"]

    def test_empty_batch(self, make_set):
        """Test rendering no data values."""
        result = BatchRenderer(make_set("x")).render("root", [])
        assert result.outputs == []
        assert result.success_rate == 0.0
