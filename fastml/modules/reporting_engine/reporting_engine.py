import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image, KeepTogether, PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants

SUMMARY_TYPES = ["all", "metrics", "params", "conf_mat"]


class ReportingEngine:
    """
    Text summaries and PDF reports.

    summary() prints a model comparison in the console and returns it as a
    DataFrame; the PDF builders lay out tables and plot grids with reportlab.
    """

    def __init__(self, config: dict, logger: logging.Logger):
        self.config = config
        self.logger = logger
        self._init_styles()

    def _init_styles(self):
        """Initialize report styles."""
        self.styles = getSampleStyleSheet()

        self.title_style = ParagraphStyle(
            'ReportTitle',
            parent=self.styles['Title'],
            fontSize=22,
            spaceAfter=20,
            textColor=colors.darkblue
        )
        self.h1 = ParagraphStyle(
            'CustomH1',
            parent=self.styles['Heading1'],
            fontSize=16,
            spaceBefore=12,
            spaceAfter=10,
            textColor=colors.darkblue,
            keepWithNext=True
        )
        self.h2 = ParagraphStyle(
            'CustomH2',
            parent=self.styles['Heading2'],
            fontSize=13,
            spaceBefore=10,
            spaceAfter=6,
            textColor=colors.black,
            keepWithNext=True
        )
        self.normal = ParagraphStyle(
            'CustomNormal',
            parent=self.styles['Normal'],
            fontSize=10,
            leading=14,
            alignment=TA_JUSTIFY,
            spaceAfter=6
        )
        self.caption_style = ParagraphStyle(
            'Caption',
            parent=self.styles['Normal'],
            fontSize=9,
            alignment=TA_CENTER,
            textColor=colors.dimgrey,
            spaceAfter=12
        )

    # =========================================================================
    #                           CONSOLE SUMMARY
    # =========================================================================

    def select_models(self, result: Any, algorithm: Union[str, List[str]] = "best") -> List[str]:
        """Flat model keys for 'best', 'all', or a list of model keys / algorithm names."""
        available = list(result.flat_models())
        if algorithm == "best":
            return list(result.best_model)
        if algorithm == "all":
            return available
        requested = [algorithm] if isinstance(algorithm, str) else list(algorithm)
        selected = []
        for item in requested:
            matches = [k for k in available if k == item or k.split(' (')[0] == item]
            if not matches:
                raise ConfigurationError(f"Unknown model '{item}'. Available: {available}")
            selected.extend(m for m in matches if m not in selected)
        return selected

    def comparison_table(self, result: Any, models: List[str], sort_metric: Optional[str] = None) -> pd.DataFrame:
        """Wide table: one row per model, one column per metric, best model(s) flagged."""
        long = result.performance_table()
        long = long[long['model'].isin(models)]
        wide = long.pivot(index='model', columns='metric', values='estimate')
        metric_order = [m for m in dict.fromkeys(long['metric']) if m in wide.columns]
        wide = wide[metric_order]

        sort_metric = sort_metric or result.metric
        if sort_metric not in wide.columns:
            raise ConfigurationError(f"sort_metric '{sort_metric}' not available. Available: {metric_order}")
        wide = wide.sort_values(sort_metric, ascending=sort_metric in constants.LOWER_IS_BETTER, na_position='last')

        wide.insert(0, 'best', ['*' if m in result.best_model else '' for m in wide.index])
        wide = wide.reset_index()
        wide.columns.name = None
        return wide

    def summary(self, result: Any, algorithm: Union[str, List[str]] = "best", type: str = "all",
                sort_metric: Optional[str] = None, show_ci: bool = False, print_output: bool = True) -> pd.DataFrame:
        """
        Print the model summary and return the comparison table.
        """
        if type not in SUMMARY_TYPES:
            raise ConfigurationError(f"Unknown summary type '{type}'. Available: {SUMMARY_TYPES}")
        models = self.select_models(result, algorithm)
        table = self.comparison_table(result, models, sort_metric)

        lines: List[str] = []
        if type in ("all", "metrics"):
            lines.extend(self._header_lines(result))
            lines.append("")
            lines.append("Performance metrics (test set)" + (" - best model(s) marked with *" if len(models) > 1 else ""))
            lines.append(table.to_string(index=False, float_format=lambda v: f"{v:.4f}"))
            if show_ci:
                lines.append("")
                lines.append(f"Bootstrap confidence intervals (alpha={self.config.get('evaluation', {}).get('bootstrap_alpha', 0.05)})")
                ci = result.performance_table()
                ci = ci[ci['model'].isin(models)][['model', 'metric', 'estimate', 'lower', 'upper']]
                lines.append(ci.to_string(index=False, float_format=lambda v: f"{v:.4f}"))
        if type in ("all", "params"):
            lines.append("")
            lines.append("Selected hyperparameters")
            for name in models:
                params = result.best_params.get(name) or {}
                rendered = ", ".join(f"{k}={v}" for k, v in params.items()) if params else "defaults (not tuned)"
                lines.append(f"  {name}: {rendered}")
        if type in ("all", "conf_mat"):
            if result.task != constants.CLASSIFICATION:
                if type == "conf_mat":
                    self.logger.warning("Confusion matrices are only available for classification.")
            else:
                for name in models:
                    cm = result.confusion_matrices.get(name)
                    if cm is None:
                        continue
                    lines.append("")
                    lines.append(f"Confusion matrix: {name}")
                    lines.append(cm.to_string())

        if print_output:
            print("\n".join(lines))
        return table

    def _header_lines(self, result: Any) -> List[str]:
        resampling = result.config.get('resampling', {})
        tuning = result.config.get('tuning', {})
        rule = "=" * 60
        lines = [
            rule,
            "fastml model summary",
            rule,
            f"Task:        {result.task}",
            f"Label:       {result.label}",
            f"Metric:      {result.metric}"
            + (" (lower is better)" if result.metric in constants.LOWER_IS_BETTER else ""),
            f"Rows:        {len(result.train_data)} train / {len(result.test_data)} test",
            f"Resampling:  {resampling.get('method', 'cv')}"
            + (f" ({resampling.get('folds')} folds)" if resampling.get('method', 'cv') != 'none' else ""),
            f"Tuning:      {tuning.get('strategy', 'grid')}",
            f"Best model:  {', '.join(result.best_model)}",
        ]
        if result.task == constants.CLASSIFICATION:
            lines.insert(6, f"Classes:     {', '.join(str(c) for c in result.classes)}"
                         + (f" (event: {result.positive_class})" if result.positive_class is not None else ""))
        if result.failures:
            lines.append(f"Skipped:     {', '.join(result.failures)}")
        return lines

    # =========================================================================
    #                           PDF REPORTS
    # =========================================================================

    def build_model_report(self, result: Any, path: Path, figures: Optional[Dict[str, Any]] = None) -> Path:
        """
        PDF report of a fitted result: run overview, metric table, hyperparameters,
        resampling consistency and diagnostic plots.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        story = []

        story.append(Paragraph("fastml Model Report", self.title_style))
        story.append(Paragraph(f"Run ID: {result.run_id or 'n/a'} | Generated {datetime.now():%Y-%m-%d %H:%M}", self.h2))
        story.append(Spacer(1, 0.3 * inch))

        story.append(Paragraph("1. Run Overview", self.h1))
        overview = [["Item", "Value"]] + [
            [line.split(":", 1)[0].strip(), line.split(":", 1)[1].strip()]
            for line in self._header_lines(result) if ":" in line
        ]
        story.append(self._styled_table(overview, header_color=colors.navy))
        story.append(Spacer(1, 0.2 * inch))

        story.append(Paragraph("2. Test-set Performance", self.h1))
        story.append(Paragraph(self._narrative(result), self.normal))
        table = self.comparison_table(result, list(result.flat_models()))
        story.append(self._frame_table(table))

        story.append(Paragraph("3. Selected Hyperparameters", self.h1))
        param_rows = [["Model", "Parameters"]]
        for name in result.flat_models():
            params = result.best_params.get(name) or {}
            param_rows.append([name, Paragraph(", ".join(f"{k}={v}" for k, v in params.items()) or "defaults",
                                               self.normal)])
        story.append(self._styled_table(param_rows, header_color=colors.teal, col_widths=[2.5 * inch, 4.5 * inch]))

        if result.resampling_summary is not None and not result.resampling_summary.empty:
            story.append(Paragraph("4. Resampling Consistency", self.h1))
            story.append(self._frame_table(result.resampling_summary))

        if figures:
            story.append(PageBreak())
            story.append(Paragraph("5. Diagnostic Plots", self.h1))
            with tempfile.TemporaryDirectory() as tmp:
                image_paths = []
                for name, fig in figures.items():
                    image_path = Path(tmp) / f"{name}.png"
                    fig.savefig(image_path, dpi=120, bbox_inches='tight')
                    image_paths.append(str(image_path))
                self._add_image_grid(story, image_paths, cols=2)
                SimpleDocTemplate(str(path), pagesize=letter).build(story)
        else:
            SimpleDocTemplate(str(path), pagesize=letter).build(story)

        self.logger.info(f"Generated model report: {path}")
        return path

    def build_exploration_report(self, results: Dict[str, Any], path: Path, label: Optional[str] = None) -> Path:
        """PDF report of fastexplore() tables and figures."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        story = [Paragraph("Exploratory Data Analysis", self.title_style)]

        overview = results['overview']
        story.append(Paragraph("1. Overview", self.h1))
        rows = [["Item", "Value"]] + [[k, f"{v:.2f}" if isinstance(v, float) else str(v)]
                                       for k, v in overview.items() if k != 'dtypes']
        if label is not None:
            rows.append(["label", label])
        story.append(self._styled_table(rows, header_color=colors.navy))

        sections = [
            ("2. Numeric Summary", 'numeric_summary'),
            ("3. Categorical Summary", 'categorical_summary'),
            ("4. Missing Values", 'missing'),
            ("5. Highly Correlated Pairs", 'high_correlations'),
            ("6. Outliers", 'outliers'),
            ("7. Normality (Shapiro-Wilk)", 'normality'),
            ("8. Label Distribution", 'label_distribution'),
        ]
        for title, key in sections:
            table = results.get(key)
            if isinstance(table, pd.DataFrame) and not table.empty:
                story.append(Paragraph(title, self.h1))
                story.append(self._frame_table(table))

        figures = results.get('figures') or {}
        with tempfile.TemporaryDirectory() as tmp:
            if figures:
                story.append(PageBreak())
                story.append(Paragraph("9. Plots", self.h1))
                image_paths = []
                for name, fig in figures.items():
                    image_path = Path(tmp) / f"{name}.png"
                    fig.savefig(image_path, dpi=120, bbox_inches='tight')
                    image_paths.append(str(image_path))
                self._add_image_grid(story, image_paths, cols=2)
            SimpleDocTemplate(str(path), pagesize=letter).build(story)

        self.logger.info(f"Generated exploration report: {path}")
        return path

    # =========================================================================
    #                           COMPONENT BUILDERS
    # =========================================================================

    def _narrative(self, result: Any) -> str:
        best = ", ".join(result.best_model)
        scores = result.performance_table()
        best_scores = scores[(scores['model'].isin(list(result.best_model))) & (scores['metric'] == result.metric)]
        value = best_scores['estimate'].iloc[0] if not best_scores.empty else np.nan
        direction = "lower" if result.metric in constants.LOWER_IS_BETTER else "higher"
        text = (f"<b>{best}</b> achieved the best test-set {result.metric} of <b>{value:.4f}</b> "
                f"({direction} is better) among {len(result.flat_models())} fitted workflow(s). ")
        if len(result.best_model) > 1:
            text += "Several models tied on the selection metric and are all reported as best. "
        return text

    def _styled_table(self, rows: List[List[Any]], header_color=colors.darkslategray,
                      col_widths: Optional[List[float]] = None) -> Table:
        t = Table(rows, colWidths=col_widths)
        t.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), header_color),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.aliceblue, colors.white]),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
        ]))
        return t

    def _frame_table(self, df: pd.DataFrame, max_rows: int = 40) -> KeepTogether:
        def fmt(v):
            if isinstance(v, (float, np.floating)):
                return "" if np.isnan(v) else f"{v:.4g}"
            return str(v)

        shown = df.head(max_rows)
        rows = [[str(c) for c in shown.columns]] + [[fmt(v) for v in row] for row in shown.itertuples(index=False)]
        table = self._styled_table(rows)
        return KeepTogether([table, Spacer(1, 0.2 * inch)])

    def _add_image_grid(self, story, image_paths: List[str], cols=2):
        """
        Arranges images in a Grid (Table) to save space.
        cols=2 means 2 images per row.
        """
        if not image_paths:
            return

        grid_data = []
        current_row = []
        img_width = 3.4 * inch
        img_height = 2.6 * inch

        for p_str in image_paths:
            path = Path(p_str)
            if not path.exists():
                continue
            img = Image(str(path), width=img_width, height=img_height, kind='proportional')
            caption_text = path.stem.replace('_', ' ').title()
            current_row.append([img, Paragraph(caption_text, self.caption_style)])

            if len(current_row) == cols:
                grid_data.append(current_row)
                current_row = []

        if current_row:
            while len(current_row) < cols:
                current_row.append("")
            grid_data.append(current_row)

        if grid_data:
            t = Table(grid_data, colWidths=[img_width + 0.1 * inch] * cols)
            t.setStyle(TableStyle([
                ('VALIGN', (0, 0), (-1, -1), 'TOP'),
                ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
                ('LEFTPADDING', (0, 0), (-1, -1), 2),
                ('RIGHTPADDING', (0, 0), (-1, -1), 2),
                ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
            ]))
            story.append(t)
