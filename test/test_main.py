"""
Integration tests for the nemo command line
Runs example programs end to end
"""

import pytest
from main import main, create_arg_parser
from error_handling import NemoParseError


def run_nemo(argv, capsys):
  main(argv)
  return capsys.readouterr().out


class TestExamples:
  """Test the bundled example programs"""

  def test_squares(self, examples_dir, capsys):
    out = run_nemo([str(examples_dir / "squares.nemo")], capsys)
    assert out.split() == ["0", "4", "16", "36", "64"]

  def test_sum(self, examples_dir, capsys):
    out = run_nemo([str(examples_dir / "sum.nemo")], capsys)
    assert out.split() == ["55", "10"]

  def test_closures(self, examples_dir, capsys):
    out = run_nemo([str(examples_dir / "closures.nemo")], capsys)
    assert out.split() == ["3", "3628800", "7"]

  def test_use(self, examples_dir, capsys):
    out = run_nemo([str(examples_dir / "use_lib.nemo")], capsys)
    assert out.split() == ["144", "14"]


class TestCommandLine:
  """Test options and failure exits"""

  def test_arg_defaults(self):
    args = create_arg_parser().parse_args(["prog.nemo"])
    assert args.entry == "main"
    assert not args.debug

  def test_entry_option(self, tmp_path, capsys):
    script = tmp_path / "entry.nemo"
    script.write_text('main() => print("main")\nother() => print("other")\n')
    out = run_nemo([str(script), "--entry", "other"], capsys)
    assert out == "other\n"

  def test_runtime_error_exits(self, tmp_path, capsys):
    script = tmp_path / "broken.nemo"
    script.write_text("main() => print(nope)\n")
    with pytest.raises(SystemExit) as exc_info:
      main([str(script)])
    assert exc_info.value.code == 1
    out = capsys.readouterr().out
    assert "UnboundName" in out
    assert "print(nope)" in out

  def test_missing_entry(self, tmp_path, capsys):
    script = tmp_path / "no_main.nemo"
    script.write_text("helper() => 1\n")
    with pytest.raises(SystemExit):
      main([str(script)])
    assert "UnboundName" in capsys.readouterr().out

  def test_parse_error_exits(self, tmp_path, capsys):
    script = tmp_path / "bad.nemo"
    script.write_text("main() => (1 +\n")
    with pytest.raises(SystemExit) as exc_info:
      main([str(script)])
    assert exc_info.value.code == 1
    assert "Parse error" in capsys.readouterr().out

  def test_semantic_error_exits(self, tmp_path, capsys):
    script = tmp_path / "dup.nemo"
    script.write_text("f() => 1\nf() => 2\nmain() => f()\n")
    with pytest.raises(SystemExit):
      main([str(script)])
    assert "Duplicate definition" in capsys.readouterr().out

  def test_missing_script(self, tmp_path, capsys):
    with pytest.raises(SystemExit):
      main([str(tmp_path / "absent.nemo")])
    assert "does not exist" in capsys.readouterr().out

  def test_parse_option(self, examples_dir, capsys):
    out = run_nemo([str(examples_dir / "squares.nemo"), "--parse"], capsys)
    assert "Parsed 1 top-level items" in out
    assert "DEFINITION" in out

  def test_analyze_option(self, examples_dir, capsys):
    out = run_nemo([str(examples_dir / "squares.nemo"), "--analyze"], capsys)
    assert "BINARY" in out


class TestModules:
  """Test `use` between files"""

  def test_use_is_relative_to_the_file(self, tmp_path, capsys):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "helpers.nemo").write_text("twice(x) => x * 2\n")
    script = tmp_path / "app.nemo"
    script.write_text('use "pkg/helpers"\nmain() => print(twice(21))\n')
    assert run_nemo([str(script)], capsys) == "42\n"

  def test_use_cycle_loads_once(self, tmp_path, capsys):
    (tmp_path / "a.nemo").write_text('use "b.nemo"\nfrom_a() => 1\n')
    (tmp_path / "b.nemo").write_text('use "a.nemo"\nfrom_b() => 2\n')
    script = tmp_path / "main.nemo"
    script.write_text('use "a.nemo"\nmain() => print(from_a() + from_b())\n')
    assert run_nemo([str(script)], capsys) == "3\n"

  def test_missing_module(self, tmp_path, capsys):
    script = tmp_path / "app.nemo"
    script.write_text('use "nowhere.nemo"\nmain() => 1\n')
    with pytest.raises(SystemExit):
      main([str(script)])
    assert "Parse error" in capsys.readouterr().out

  def test_interpreter_use(self, nemo, tmp_path):
    (tmp_path / "lib.nemo").write_text("seven() => 7\n")
    nemo.eval_line(f'use "{tmp_path / "lib.nemo"}"')
    assert nemo.eval_line("seven()")['value'] == 7.0
    assert str(tmp_path / "lib.nemo") in nemo.global_env['modules']

  def test_use_retries_after_parse_error(self, nemo, tmp_path):
    lib = tmp_path / "lib.nemo"
    lib.write_text("broken(x) => x +\n")
    with pytest.raises(NemoParseError):
      nemo.eval_line(f'use "{lib}"')
    assert str(lib) not in nemo.global_env['modules']

    lib.write_text("fixed(x) => x + 1\n")
    nemo.eval_line(f'use "{lib}"')
    assert nemo.eval_line("fixed(1)")['value'] == 2.0

  def test_use_retries_after_missing_file(self, nemo, tmp_path):
    lib = tmp_path / "later.nemo"
    with pytest.raises(NemoParseError):
      nemo.eval_line(f'use "{lib}"')
    lib.write_text("later() => 5\n")
    nemo.eval_line(f'use "{lib}"')
    assert nemo.eval_line("later()")['value'] == 5.0
