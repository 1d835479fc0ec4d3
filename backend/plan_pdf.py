"""
College Planner -- PDF Report Generator
Renders a full college application plan to a branded PDF using fpdf2.
"""

from datetime import datetime

from fpdf import FPDF

from backend.plan_generator import summarize_profile


def _safe(text):
    """Replace Unicode characters that core PDF fonts can't handle."""
    if not text:
        return ''
    text = str(text)
    replacements = {
        '—': '--',   # em dash
        '–': '-',    # en dash
        '‘': "'",    # left single quote
        '’': "'",    # right single quote
        '“': '"',    # left double quote
        '”': '"',    # right double quote
        '…': '...',  # ellipsis
        '•': '*',    # bullet
        '→': '->',   # right arrow
        ' ': ' ',    # non-breaking space
    }
    for char, replacement in replacements.items():
        text = text.replace(char, replacement)
    # Strip any remaining non-latin-1 characters
    try:
        text.encode('latin-1')
    except UnicodeEncodeError:
        text = text.encode('latin-1', errors='replace').decode('latin-1')
    return text


CATEGORY_COLORS = {
    'academics': (37, 99, 235),
    'testing': (124, 58, 237),
    'extracurricular': (5, 150, 105),
    'summer': (217, 119, 6),
    'application': (220, 38, 38),
    'essays': (219, 39, 119),
}

PRIORITY_COLORS = {
    'HIGH': (220, 38, 38),
    'MEDIUM': (217, 119, 6),
}


class CollegePlanPDF(FPDF):
    """PDF with College Planner branding on every page."""

    def __init__(self, report_id=''):
        super().__init__()
        self.report_id = report_id
        self.set_auto_page_break(auto=True, margin=25)

    def header(self):
        self.set_font('Helvetica', 'B', 18)
        self.set_text_color(37, 99, 235)
        self.cell(0, 10, 'College Application Plan', new_x='LMARGIN', new_y='NEXT')
        self.set_font('Helvetica', '', 10)
        self.set_text_color(107, 114, 128)
        self.cell(0, 5, 'Your personalized roadmap to college admissions', new_x='LMARGIN', new_y='NEXT')
        self.ln(4)
        self.set_draw_color(229, 231, 235)
        self.set_line_width(0.5)
        self.line(10, self.get_y(), 200, self.get_y())
        self.ln(6)

    def footer(self):
        self.set_y(-20)
        self.set_draw_color(229, 231, 235)
        self.set_line_width(0.3)
        self.line(10, self.get_y(), 200, self.get_y())
        self.ln(3)
        self.set_font('Helvetica', '', 8)
        self.set_text_color(156, 163, 175)
        self.cell(0, 5, _safe(f'College Planner  |  Report {self.report_id}  |  Page {self.page_no()}/{{nb}}'), align='C')

    def section_title(self, title):
        self.ln(4)
        self.set_font('Helvetica', 'B', 13)
        self.set_text_color(31, 41, 55)
        self.cell(0, 8, _safe(title), new_x='LMARGIN', new_y='NEXT')
        self.set_draw_color(37, 99, 235)
        self.set_line_width(0.8)
        self.line(10, self.get_y() + 1, 80, self.get_y() + 1)
        self.ln(6)

    def body_text(self, text, bold=False):
        self.set_font('Helvetica', 'B' if bold else '', 10)
        self.set_text_color(75, 85, 99)
        self.multi_cell(0, 5.5, _safe(text), align='L')
        self.ln(2)

    def stat_row(self, label, value):
        self.set_font('Helvetica', '', 10)
        self.set_text_color(107, 114, 128)
        self.cell(60, 6, _safe(label))
        self.set_text_color(31, 41, 55)
        self.set_font('Helvetica', 'B', 10)
        self.cell(0, 6, _safe(str(value)), new_x='LMARGIN', new_y='NEXT')


def generate_plan_pdf(report):
    """
    Generate the full plan as a PDF.

    Args:
        report: stored report dict (id, studentProfile, content, createdAt)

    Returns:
        bytes: The PDF file content.
    """
    pdf = CollegePlanPDF(report.get('id', ''))
    pdf.alias_nb_pages()
    pdf.add_page()

    content = report.get('content') or {}
    profile = summarize_profile(report.get('studentProfile') or {})

    created = report.get('createdAt', '')
    try:
        created_label = datetime.fromisoformat(created).strftime('%B %d, %Y')
    except (TypeError, ValueError):
        created_label = datetime.now().strftime('%B %d, %Y')

    pdf.set_font('Helvetica', '', 9)
    pdf.set_text_color(156, 163, 175)
    pdf.cell(0, 5, _safe(f'Report generated: {created_label}'), new_x='LMARGIN', new_y='NEXT')
    pdf.ln(4)

    # ==================================
    # STUDENT PROFILE
    # ==================================
    pdf.section_title('Student Profile')
    pdf.stat_row('Name:', profile['name'])
    pdf.stat_row('Grade:', profile['grade'])
    pdf.stat_row('High School:', profile['school'])
    pdf.stat_row('Academic Interests:', profile['interests'])

    # ==================================
    # OVERVIEW
    # ==================================
    if content.get('overview'):
        pdf.section_title('Overview')
        pdf.body_text(content['overview'])

    # ==================================
    # TIMELINE
    # ==================================
    timeline = content.get('timeline') or []
    if timeline:
        pdf.section_title('Application Timeline')
        for period in timeline:
            pdf.set_font('Helvetica', 'B', 11)
            pdf.set_text_color(31, 41, 55)
            pdf.cell(0, 7, _safe(period.get('period', '')), new_x='LMARGIN', new_y='NEXT')

            for event in period.get('events') or []:
                category = (event.get('category') or '').lower()
                color = CATEGORY_COLORS.get(category, (107, 114, 128))

                pdf.set_x(14)
                pdf.set_font('Helvetica', 'B', 10)
                pdf.set_text_color(*color)
                pdf.cell(0, 5.5, _safe(f"[{category or 'general'}] {event.get('title', '')}"), new_x='LMARGIN', new_y='NEXT')

                detail = event.get('description', '')
                if event.get('deadline'):
                    detail = f"{detail} (Deadline: {event['deadline']})"
                if detail:
                    pdf.set_x(14)
                    pdf.set_font('Helvetica', '', 9)
                    pdf.set_text_color(75, 85, 99)
                    pdf.multi_cell(186, 5, _safe(detail), align='L')
                pdf.ln(1)
            pdf.ln(3)

    # ==================================
    # NEXT STEPS
    # ==================================
    next_steps = content.get('nextSteps') or []
    if next_steps:
        pdf.section_title('Next Steps')
        for i, step in enumerate(next_steps, 1):
            priority = (step.get('priority') or 'medium').upper()
            pdf.set_font('Helvetica', 'B', 10)
            pdf.set_text_color(*PRIORITY_COLORS.get(priority, (107, 114, 128)))
            pdf.cell(0, 5.5, _safe(f"{i}. [{priority}] {step.get('title', '')}"), new_x='LMARGIN', new_y='NEXT')
            if step.get('description'):
                pdf.set_x(14)
                pdf.set_font('Helvetica', '', 9)
                pdf.set_text_color(75, 85, 99)
                pdf.multi_cell(186, 5, _safe(step['description']), align='L')
            pdf.ln(3)

    return bytes(pdf.output())
